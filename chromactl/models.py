from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from .config import DEFAULT_CONFIG, clamp_config_value
from .utils import new_id, now_iso

# Job states
QUEUED = "QUEUED"
PROCESSING = "PROCESSING"

# Failure classes
TRANSIENT = "transient"
POLICY = "policy"

# Source states (derived, never stored)
SOURCE_QUEUED = "QUEUED"
SOURCE_PROCESSING = "PROCESSING"
SOURCE_COMPLETED = "COMPLETED"
SOURCE_PARTIAL = "PARTIAL"

# Declaration order is product order: the first category varies slowest.
CATEGORIES = (
    "gender",
    "age",
    "body_type",
    "skin",
    "hair",
    "eye_color",
    "emotions",
    "clothes",
    "shoes",
    "species",
    "technology",
    "environment",
    "time_of_day",
    "weather",
    "aspect_ratio",
    "items",
    "actions",
    "art_style",
    "lighting",
    "camera",
    "mood",
    "decorations",
    "skin_conditions",
)


def _check_values(values: Iterable[str]) -> Tuple[str, ...]:
    if isinstance(values, str):
        raise ValueError("Selection values must be a sequence of strings, not a string.")
    out = tuple(values)
    for v in out:
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"Invalid option value: {v!r}")
    if len(set(out)) != len(out):
        raise ValueError(f"Duplicate option values: {list(out)}")
    return out


@dataclass(frozen=True)
class Permuted:
    """Each selected value becomes its own arm of the product."""
    values: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "values", _check_values(self.values))


@dataclass(frozen=True)
class Combined:
    """All selected values are joined into one compound value."""
    values: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "values", _check_values(self.values))


Selection = Union[Permuted, Combined]


@dataclass(frozen=True)
class Settings:
    concurrency: int = int(DEFAULT_CONFIG["concurrency"])
    max_transient_retries: int = int(DEFAULT_CONFIG["max_transient_retries"])
    max_policy_retries: int = int(DEFAULT_CONFIG["max_policy_retries"])

    def __post_init__(self):
        for name in ("concurrency", "max_transient_retries", "max_policy_retries"):
            object.__setattr__(self, name, clamp_config_value(name, getattr(self, name)))

    @classmethod
    def from_config(cls, cfg: Mapping[str, str]) -> "Settings":
        return cls(
            concurrency=cfg.get("concurrency", DEFAULT_CONFIG["concurrency"]),
            max_transient_retries=cfg.get("max_transient_retries", DEFAULT_CONFIG["max_transient_retries"]),
            max_policy_retries=cfg.get("max_policy_retries", DEFAULT_CONFIG["max_policy_retries"]),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "concurrency": self.concurrency,
            "max_transient_retries": self.max_transient_retries,
            "max_policy_retries": self.max_policy_retries,
        }


@dataclass(frozen=True)
class OptionSet:
    """
    Per-category selections plus the non-combinatorial flags and settings
    that travel with every job created from it. Immutable: every edit
    returns a new OptionSet, so a job's snapshot can never change under it.
    """
    selections: Mapping[str, Selection] = field(default_factory=dict)
    replace_background: bool = False
    remove_characters: bool = False
    settings: Settings = field(default_factory=Settings)

    def __post_init__(self):
        clean = {}
        for key, sel in self.selections.items():
            if key not in CATEGORIES:
                raise ValueError(f"Unknown category: {key!r}")
            if not isinstance(sel, (Permuted, Combined)):
                sel = Permuted(sel)
            clean[key] = sel
        object.__setattr__(self, "selections", MappingProxyType(clean))

    def selection(self, category: str) -> Selection:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category!r}")
        return self.selections.get(category, Permuted())

    def values(self, category: str) -> Tuple[str, ...]:
        return self.selection(category).values

    def is_combined(self, category: str) -> bool:
        return isinstance(self.selection(category), Combined)

    @property
    def combined_groups(self) -> Tuple[str, ...]:
        return tuple(c for c in CATEGORIES if isinstance(self.selections.get(c), Combined))

    def _with_selection(self, category: str, sel: Selection) -> "OptionSet":
        selections = dict(self.selections)
        selections[category] = sel
        return replace(self, selections=selections)

    def with_values(self, category: str, values: Iterable[str]) -> "OptionSet":
        kind = Combined if self.is_combined(category) else Permuted
        return self._with_selection(category, kind(values))

    def toggle(self, category: str, value: str) -> "OptionSet":
        current = list(self.values(category))
        if value in current:
            current.remove(value)
        else:
            current.append(value)
        return self.with_values(category, current)

    def with_combined(self, category: str, combined: bool = True) -> "OptionSet":
        kind = Combined if combined else Permuted
        return self._with_selection(category, kind(self.values(category)))

    def with_modes(self, replace_background: Optional[bool] = None,
                   remove_characters: Optional[bool] = None) -> "OptionSet":
        return replace(
            self,
            replace_background=self.replace_background if replace_background is None else replace_background,
            remove_characters=self.remove_characters if remove_characters is None else remove_characters,
        )

    def with_settings(self, settings: Settings) -> "OptionSet":
        return replace(self, settings=settings)

    def snapshot(self) -> "OptionSet":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "selections": {c: list(s.values) for c, s in self.selections.items() if s.values},
            "combined": list(self.combined_groups),
            "replace_background": self.replace_background,
            "remove_characters": self.remove_characters,
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "OptionSet":
        combined = set(data.get("combined", ()))
        selections = {}
        for category, values in data.get("selections", {}).items():
            kind = Combined if category in combined else Permuted
            selections[category] = kind(values)
        for category in combined - set(selections):
            selections[category] = Combined()
        return cls(
            selections=selections,
            replace_background=bool(data.get("replace_background", False)),
            remove_characters=bool(data.get("remove_characters", False)),
            settings=Settings(**data.get("settings", {})),
        )


def default_options() -> OptionSet:
    return OptionSet(selections={
        "gender": Permuted(("Female",)),
        "aspect_ratio": Permuted(("Original",)),
        "art_style": Permuted(("Photorealistic",)),
    })


@dataclass(frozen=True)
class Combination:
    values: Mapping[str, str] = field(default_factory=dict)
    replace_background: bool = False
    remove_characters: bool = False
    # raw arm values, reserved markers included; tells marker arms apart
    variant: str = ""

    def get(self, category: str) -> Optional[str]:
        return self.values.get(category)


@dataclass
class Job:
    source_id: str
    prompt: str
    summary: str
    options: OptionSet
    aspect_ratio: Optional[str] = None
    status: str = QUEUED
    retry_count: int = 0
    variant: str = ""
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    @property
    def signature(self) -> str:
        return f"{self.source_id}|{self.variant or self.summary}"

    def derive(self) -> "Job":
        """Fresh QUEUED copy for a retry; the retry counter carries over."""
        return replace(self, id=new_id(), status=QUEUED, created_at=now_iso())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "prompt": self.prompt,
            "summary": self.summary,
            "options": self.options.to_dict(),
            "aspect_ratio": self.aspect_ratio,
            "status": self.status,
            "retry_count": self.retry_count,
            "variant": self.variant,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Job":
        return cls(
            id=data["id"],
            source_id=data["source_id"],
            prompt=data["prompt"],
            summary=data["summary"],
            options=OptionSet.from_dict(data.get("options", {})),
            aspect_ratio=data.get("aspect_ratio"),
            status=data.get("status", QUEUED),
            retry_count=int(data.get("retry_count", 0)),
            variant=data.get("variant", ""),
            created_at=data.get("created_at") or now_iso(),
        )


@dataclass
class FailedItem:
    job: Job
    error: str
    category: str
    retry_count: int
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    @property
    def source_id(self) -> str:
        return self.job.source_id

    @property
    def summary(self) -> str:
        return self.job.summary

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job": self.job.to_dict(),
            "error": self.error,
            "category": self.category,
            "retry_count": self.retry_count,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "FailedItem":
        return cls(
            id=data["id"],
            job=Job.from_dict(data["job"]),
            error=data["error"],
            category=data.get("category", TRANSIENT),
            retry_count=int(data.get("retry_count", 0)),
            created_at=data.get("created_at") or now_iso(),
        )


@dataclass
class Result:
    source_id: str
    prompt: str
    summary: str
    artifact: str
    duration: float = 0.0
    variant: str = ""
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    @property
    def signature(self) -> str:
        return f"{self.source_id}|{self.variant or self.summary}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "prompt": self.prompt,
            "summary": self.summary,
            "artifact": self.artifact,
            "duration": self.duration,
            "variant": self.variant,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Result":
        return cls(**{k: data[k] for k in (
            "id", "source_id", "prompt", "summary", "artifact", "duration", "variant", "created_at"
        ) if k in data})


@dataclass
class Source:
    name: str
    path: str
    options: OptionSet
    mime_type: str = "image/png"
    total_variations: int = 0
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "mime_type": self.mime_type,
            "options": self.options.to_dict(),
            "total_variations": self.total_variations,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Source":
        return cls(
            id=data["id"],
            name=data["name"],
            path=data["path"],
            mime_type=data.get("mime_type", "image/png"),
            options=OptionSet.from_dict(data.get("options", {})),
            total_variations=int(data.get("total_variations", 0)),
            created_at=data.get("created_at") or now_iso(),
        )
