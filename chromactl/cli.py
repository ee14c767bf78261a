import json
import logging
from dataclasses import replace

import click

from . import repository
from .config import ALLOWED_CONFIG_KEYS
from .db import init_db, connect_db
from .events import EventChannel, log_listener
from .generator import CommandGenerator
from .jobqueue import DIRECTIONS
from .models import CATEGORIES, POLICY, TRANSIENT, default_options
from .permutations import count
from .utils import find_prefix, format_eta
from .workspace import Workspace


def _fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


def _resolve(ids, prefix, what):
    found = find_prefix(list(ids), prefix)
    if found is None:
        raise click.ClickException(f"{what} {prefix} not found.")
    return found


def _open():
    conn = connect_db()
    events = EventChannel()
    events.subscribe(log_listener)
    return conn, Workspace.load(conn, events=events)


@click.group(help="chromactl: batch line-art colorization queue")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(threadName)s] %(message)s",
    )
    # Ensure DB/schema exist before any command runs
    init_db()


# ---------- Options ----------
@cli.group("options", help="Option categories used to build variations")
def options_group():
    pass


@options_group.command("show")
def options_show():
    conn = connect_db()
    try:
        opts = repository.load_options(conn)
    finally:
        conn.close()
    for c in CATEGORIES:
        values = opts.values(c)
        if not values:
            continue
        tag = " (combined)" if opts.is_combined(c) else ""
        click.echo(f"{c:>16}{tag}: {', '.join(values)}")
    click.echo(f"replace_background={opts.replace_background} remove_characters={opts.remove_characters}")
    click.echo(f"variations per source: {count(opts)}")


@options_group.command("set", help="Replace a category's selection (no values clears it)")
@click.argument("category", type=click.Choice(CATEGORIES))
@click.argument("values", nargs=-1)
def options_set(category, values):
    conn = connect_db()
    try:
        opts = repository.load_options(conn).with_values(category, values)
        repository.save_options(conn, opts)
        click.secho(f"{category} = {list(values)} ({count(opts)} variations per source)", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()


@options_group.command("toggle", help="Add or remove one value")
@click.argument("category", type=click.Choice(CATEGORIES))
@click.argument("value")
def options_toggle(category, value):
    conn = connect_db()
    try:
        opts = repository.load_options(conn).toggle(category, value)
        repository.save_options(conn, opts)
        click.secho(f"{category} = {list(opts.values(category))}", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()


@options_group.command("combine", help="Join a category's values into one variation")
@click.argument("category", type=click.Choice(CATEGORIES))
@click.option("--off", is_flag=True, help="Permute the values again")
def options_combine(category, off):
    conn = connect_db()
    try:
        opts = repository.load_options(conn).with_combined(category, not off)
        repository.save_options(conn, opts)
        state = "permuted" if off else "combined"
        click.secho(f"{category} is now {state} ({count(opts)} variations per source)", fg="green")
    finally:
        conn.close()


@options_group.command("mode")
@click.option("--replace-background/--keep-background", default=None)
@click.option("--remove-characters/--keep-characters", default=None)
def options_mode(replace_background, remove_characters):
    conn = connect_db()
    try:
        opts = repository.load_options(conn).with_modes(replace_background, remove_characters)
        repository.save_options(conn, opts)
        click.secho(
            f"replace_background={opts.replace_background} remove_characters={opts.remove_characters}",
            fg="green",
        )
    finally:
        conn.close()


@options_group.command("count", help="Number of variations each new source will produce")
def options_count():
    conn = connect_db()
    try:
        opts = repository.load_options(conn)
    finally:
        conn.close()
    click.echo(count(opts))


@options_group.command("reset")
def options_reset():
    conn = connect_db()
    try:
        repository.save_options(conn, default_options())
        click.secho("Options reset to defaults.", fg="yellow")
    finally:
        conn.close()


# ---------- Intake ----------
@cli.command("add", help="Add source images; each gets one job per variation")
@click.argument("paths", nargs=-1, required=True, type=click.Path())
def add_cmd(paths):
    conn, ws = _open()
    try:
        for source, jobs in ws.add_sources(paths):
            click.secho(
                f"Added {source.name} ({source.id[:8]}) -> {len(jobs)}/{source.total_variations} job(s)",
                fg="green",
            )
        ws.save(conn)
    except (ValueError, RuntimeError) as e:
        _fail(e)
    finally:
        conn.close()


# ---------- Queue ----------
@cli.command("list")
@click.option("--state", type=click.Choice(["queued", "processing"]), default=None)
def list_cmd(state):
    conn, ws = _open()
    conn.close()
    jobs = [j for j in ws.queue if state is None or j.status == state.upper()]
    if not jobs:
        click.echo("No jobs.")
        return
    for pos, j in enumerate(jobs, 1):
        name = ws.sources[j.source_id].name if j.source_id in ws.sources else j.source_id[:8]
        click.echo(
            f"{pos:>4} | {j.id[:8]} | {j.status:<10} | retries={j.retry_count} | {name} | {j.summary}"
        )


@cli.command("move")
@click.argument("job_id")
@click.argument("direction", type=click.Choice(DIRECTIONS))
def move_cmd(job_id, direction):
    conn, ws = _open()
    try:
        jid = _resolve((j.id for j in ws.queue), job_id, "Job")
        ws.queue.reorder(jid, direction)
        ws.save(conn)
        click.secho(f"Moved {jid[:8]} {direction}.", fg="green")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@cli.command("prioritize", help="Move all jobs of a source to the front")
@click.argument("source_id")
def prioritize_cmd(source_id):
    conn, ws = _open()
    try:
        sid = _resolve(ws.sources, source_id, "Source")
        n = ws.prioritize_source(sid)
        ws.save(conn)
        click.secho(f"Prioritized {n} job(s).", fg="green")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@cli.command("remove")
@click.argument("job_id")
def remove_cmd(job_id):
    conn, ws = _open()
    try:
        jid = _resolve((j.id for j in ws.queue), job_id, "Job")
        ws.queue.remove(jid)
        ws.save(conn)
        click.secho(f"Removed {jid[:8]}.", fg="yellow")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@cli.command("clear", help="Drop every queued job")
def clear_cmd():
    conn, ws = _open()
    try:
        n = ws.queue.clear()
        ws.save(conn)
        click.secho(f"Cleared {n} job(s).", fg="yellow")
    finally:
        conn.close()


# ---------- Sources ----------
@cli.group("sources", help="Source images")
def sources_group():
    pass


@sources_group.command("list")
def sources_list():
    conn, ws = _open()
    conn.close()
    if not ws.sources:
        click.echo("No sources.")
        return
    for s in ws.sources.values():
        done, total = ws.progress(s.id)
        click.echo(f"{s.id[:8]} | {ws.source_status(s.id):<10} | {done}/{total} | {s.name}")


@sources_group.command("remove")
@click.argument("source_id")
def sources_remove(source_id):
    conn, ws = _open()
    try:
        sid = _resolve(ws.sources, source_id, "Source")
        ws.remove_source(sid)
        ws.save(conn)
        click.secho(f"Removed source {sid[:8]} and its pending work.", fg="yellow")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@sources_group.command("rerun")
@click.argument("source_id")
def sources_rerun(source_id):
    conn, ws = _open()
    try:
        sid = _resolve(ws.sources, source_id, "Source")
        jobs = ws.rerun_source(sid)
        ws.save(conn)
        click.secho(f"Re-queued {len(jobs)} job(s) for {sid[:8]}.", fg="green")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


# ---------- Run ----------
@cli.command("run", help="Process the queue until it drains (Ctrl+C stops admission)")
@click.option("--cmd", "command", required=True,
              help="Generator command; may use {source}, {output}, {aspect_ratio}. Prompt is in $CHROMACTL_PROMPT")
@click.option("--output-dir", default="output", show_default=True)
@click.option("--concurrency", type=int, default=None, help="Override the configured concurrency")
def run_cmd(command, output_dir, concurrency):
    conn, ws = _open()
    try:
        cfg = repository.get_config(conn)
        settings = ws.settings
        if concurrency is not None:
            settings = replace(settings, concurrency=concurrency)
        generator = CommandGenerator(
            command,
            output_dir=output_dir,
            timeout=int(cfg["timeout_seconds"]),
            attempts=int(cfg["generator_attempts"]),
            backoff_base=int(cfg["backoff_base"]),
        )
        scheduler = ws.scheduler(generator)
        scheduler.update_settings(settings)

        click.secho(f"Processing {ws.queue.queued_count()} job(s) with {settings.concurrency} worker(s)…", fg="cyan")
        scheduler.start()
        try:
            while not scheduler.wait(timeout=2.0):
                ws.save(conn)
        except KeyboardInterrupt:
            click.secho("Stopping: waiting for in-flight jobs…", fg="yellow")
            scheduler.stop()
            scheduler.wait()
        ws.save(conn)
        if scheduler.error is not None:
            raise RuntimeError(str(scheduler.error))
        click.secho(f"Done. results={len(ws.results)} failed={len(ws.failed)}", fg="green")
    except (ValueError, RuntimeError) as e:
        _fail(e)
    finally:
        conn.close()


# ---------- Failed ----------
@cli.group("failed", help="Failed jobs")
def failed_group():
    pass


@failed_group.command("list")
def failed_list():
    conn, ws = _open()
    conn.close()
    groups = ws.failed.by_category(ws.settings)
    if not len(ws.failed):
        click.echo("No failed jobs.")
        return
    for label in (TRANSIENT, POLICY, "blocked"):
        for f in groups[label]:
            click.echo(f"{f.id[:8]} | {label:<9} | failures={f.retry_count} | {f.summary} | {f.error}")


@failed_group.command("retry")
@click.argument("item_id")
def failed_retry(item_id):
    conn, ws = _open()
    try:
        fid = _resolve((f.id for f in ws.failed), item_id, "Failed item")
        job = ws.retry(fid)
        ws.save(conn)
        click.secho(f"Re-queued {job.summary} at the front.", fg="green")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@failed_group.command("retry-all")
@click.option("--kind", type=click.Choice([TRANSIENT, POLICY]), default=None)
def failed_retry_all(kind):
    conn, ws = _open()
    try:
        jobs = ws.retry_all(kind)
        ws.save(conn)
        held = len(ws.failed.blocked(ws.settings))
        click.secho(f"Re-queued {len(jobs)} job(s); {held} blocked at their retry ceiling.", fg="green")
    finally:
        conn.close()


@failed_group.command("delete")
@click.argument("item_id")
def failed_delete(item_id):
    conn, ws = _open()
    try:
        fid = _resolve((f.id for f in ws.failed), item_id, "Failed item")
        ws.failed.delete(fid)
        ws.save(conn)
        click.secho(f"Deleted {fid[:8]}.", fg="yellow")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


# ---------- Results ----------
@cli.group("results", help="Generated images")
def results_group():
    pass


@results_group.command("list")
def results_list():
    conn, ws = _open()
    conn.close()
    if not len(ws.results):
        click.echo("No results.")
        return
    for r in ws.results:
        click.echo(f"{r.id[:8]} | {r.created_at} | {r.duration:6.1f}s | {r.summary} | {r.artifact}")


@results_group.command("delete")
@click.argument("result_id")
def results_delete(result_id):
    conn, ws = _open()
    try:
        rid = _resolve((r.id for r in ws.results), result_id, "Result")
        ws.results.delete(rid)
        ws.save(conn)
        click.secho(f"Deleted {rid[:8]}.", fg="yellow")
    except (ValueError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@results_group.command("clear")
def results_clear():
    conn, ws = _open()
    try:
        n = ws.results.clear()
        ws.save(conn)
        click.secho(f"Cleared {n} result(s).", fg="yellow")
    finally:
        conn.close()


# ---------- Status ----------
@cli.command("status")
@click.option("--events", "n_events", type=int, default=5, show_default=True, help="Recent events to include")
def status_cmd(n_events):
    conn, ws = _open()
    conn.close()
    groups = ws.failed.by_category(ws.settings)
    scheduler = ws.scheduler(None)
    out = {
        "sources": len(ws.sources),
        **ws.queue.counts(),
        "completed": len(ws.results),
        "failed": len(groups[TRANSIENT]),
        "prohibited": len(groups[POLICY]),
        "blocked": len(groups["blocked"]),
        "eta": format_eta(scheduler.eta_seconds()),
        "events": [e.line() for e in ws.log.recent(n_events)],
    }
    click.echo(json.dumps(out, indent=2))


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
def config_get():
    conn = connect_db()
    try:
        click.echo(json.dumps(repository.get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key", type=click.Choice(sorted(ALLOWED_CONFIG_KEYS)))
@click.argument("value")
def config_set_cmd(key, value):
    conn = connect_db()
    try:
        stored = repository.set_config(conn, key, value)
        click.secho(f"Config updated: {key}={stored}", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()


def main():
    cli()
