"""Data model shared by the diff engine, the coordinator and the CLI."""
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import jsonschema

from termsync.errors import InvalidInputError

# Fields a term update may carry.
TERM_FIELDS = ("context", "reference", "plural", "tags", "comment")

MachineTranslateDirective = Union[bool, List[str], None]


@dataclass(frozen=True)
class KeyUsage:
    """One place in the source tree where a key is used."""
    path: str
    line: int = 0
    context: str = ""


@dataclass(frozen=True)
class LocalKey:
    """A translatable key as reported by the external key detector."""
    key: str
    phrase: str = ""
    files: Tuple[KeyUsage, ...] = ()
    framework: str = ""
    usage: str = ""
    dynamic: bool = False
    examples: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalKey":
        return cls(
            key=data["key"],
            phrase=data.get("phrase") or "",
            files=tuple(
                KeyUsage(path=f["path"], line=int(f.get("line") or 0), context=f.get("context") or "")
                for f in data.get("files") or []
            ),
            framework=data.get("framework") or "",
            usage=data.get("usage") or "",
            dynamic=bool(data.get("dynamic", False)),
            examples=tuple(data.get("examples") or []),
        )


@dataclass(frozen=True)
class RemoteTerm:
    """
    One term as held by POEditor.

    Add candidates produced by the diff engine use the same shape with no
    timestamps.
    """
    term: str
    context: str = ""
    reference: str = ""
    plural: str = ""
    tags: Tuple[str, ...] = ()
    comment: str = ""
    created: Optional[str] = None
    updated: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteTerm":
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [tags]
        return cls(
            term=data["term"],
            context=data.get("context") or "",
            reference=data.get("reference") or "",
            plural=data.get("plural") or "",
            tags=tuple(tags),
            comment=data.get("comment") or "",
            created=data.get("created") or None,
            updated=data.get("updated") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "term": self.term,
            "context": self.context,
            "reference": self.reference,
            "plural": self.plural,
            "tags": list(self.tags),
            "comment": self.comment,
        }
        if self.created:
            data["created"] = self.created
        if self.updated:
            data["updated"] = self.updated
        return data


@dataclass(frozen=True)
class TranslationEntry:
    """A single cell of the (term x language) translation matrix."""
    term: str
    language: str
    content: str


@dataclass(frozen=True)
class TermUpdate:
    """A partial update for an existing term; only changed fields are present."""
    term: str
    updates: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        updates = {name: (tuple(value) if name == "tags" else value) for name, value in self.updates.items()}
        object.__setattr__(self, "updates", MappingProxyType(updates))

    def to_dict(self) -> Dict[str, Any]:
        updates = {name: (list(value) if name == "tags" else value)
                   for name, value in self.updates.items()}
        return {"term": self.term, "updates": updates}


@dataclass(frozen=True)
class PlanStats:
    adds: int = 0
    updates: int = 0
    deletes: int = 0
    missing: int = 0


PLAN_SCHEMA = {
    "type": "object",
    "required": ["addTerms", "updateTerms", "deleteTerms", "missingTranslations", "stats"],
    "properties": {
        "addTerms": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["term"],
                "properties": {
                    "term": {"type": "string", "minLength": 1},
                    "context": {"type": "string"},
                    "reference": {"type": "string"},
                    "plural": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "comment": {"type": "string"},
                },
            },
        },
        "updateTerms": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["term", "updates"],
                "properties": {
                    "term": {"type": "string", "minLength": 1},
                    "updates": {
                        "type": "object",
                        "properties": {
                            "context": {"type": "string"},
                            "reference": {"type": "string"},
                            "plural": {"type": "string"},
                            "tags": {"type": "array", "items": {"type": "string"}},
                            "comment": {"type": "string"},
                        },
                        "additionalProperties": False,
                    },
                },
            },
        },
        "deleteTerms": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "missingTranslations": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
        "termContexts": {"type": "object", "additionalProperties": {"type": "string"}},
        "obsoleteTranslations": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
        "stats": {
            "type": "object",
            "required": ["adds", "updates", "deletes", "missing"],
            "properties": {
                "adds": {"type": "integer", "minimum": 0},
                "updates": {"type": "integer", "minimum": 0},
                "deletes": {"type": "integer", "minimum": 0},
                "missing": {"type": "integer", "minimum": 0},
            },
            "additionalProperties": False,
        },
    },
}


@dataclass(frozen=True)
class SyncPlan:
    """The immutable reconciliation plan produced by the diff engine."""
    add_terms: Tuple[RemoteTerm, ...] = ()
    update_terms: Tuple[TermUpdate, ...] = ()
    delete_terms: Tuple[str, ...] = ()
    missing_translations: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, hash=False)
    obsolete_translations: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, hash=False)
    stats: PlanStats = field(default_factory=PlanStats)
    # Current remote context of updated or deleted terms, where non-empty.
    # POEditor addresses an existing term by (term, context).
    term_contexts: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Read-only copies, so stats.missing cannot drift from the lists.
        for name in ("missing_translations", "obsolete_translations"):
            frozen = {lang: tuple(keys) for lang, keys in getattr(self, name).items()}
            object.__setattr__(self, name, MappingProxyType(frozen))
        object.__setattr__(self, "term_contexts", MappingProxyType(dict(self.term_contexts)))

    @property
    def is_empty(self) -> bool:
        return not (self.add_terms or self.update_terms or self.delete_terms)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "addTerms": [term.to_dict() for term in self.add_terms],
            "updateTerms": [update.to_dict() for update in self.update_terms],
            "deleteTerms": list(self.delete_terms),
            "missingTranslations": {lang: list(keys) for lang, keys in self.missing_translations.items()},
            "obsoleteTranslations": {lang: list(keys) for lang, keys in self.obsolete_translations.items()},
            "stats": {
                "adds": self.stats.adds,
                "updates": self.stats.updates,
                "deletes": self.stats.deletes,
                "missing": self.stats.missing,
            },
        }
        if self.term_contexts:
            data["termContexts"] = dict(self.term_contexts)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncPlan":
        """
        Rebuild a plan from its serialized form.

        Raises:
            InvalidInputError: If the payload does not match the plan schema or
                its stats disagree with its lists.
        """
        try:
            jsonschema.validate(instance=data, schema=PLAN_SCHEMA)
        except jsonschema.ValidationError as schema_exc:
            raise InvalidInputError(f"Invalid sync plan: {schema_exc.message}") from schema_exc

        missing = {lang: tuple(keys) for lang, keys in data["missingTranslations"].items()}
        obsolete = {lang: tuple(keys) for lang, keys in (data.get("obsoleteTranslations") or {}).items()}
        update_terms = []
        for item in data["updateTerms"]:
            updates = dict(item["updates"])
            if "tags" in updates:
                updates["tags"] = tuple(updates["tags"])
            update_terms.append(TermUpdate(term=item["term"], updates=updates))

        plan = cls(
            add_terms=tuple(RemoteTerm.from_dict(term) for term in data["addTerms"]),
            update_terms=tuple(update_terms),
            delete_terms=tuple(data["deleteTerms"]),
            missing_translations=missing,
            obsolete_translations=obsolete,
            stats=PlanStats(**data["stats"]),
            term_contexts=data.get("termContexts") or {},
        )
        expected_missing = sum(len(keys) for keys in missing.values())
        if plan.stats.missing != expected_missing:
            raise InvalidInputError(
                f"Invalid sync plan: stats.missing is {plan.stats.missing} "
                f"but missingTranslations lists {expected_missing} entries."
            )
        return plan

    @classmethod
    def from_json(cls, text: str) -> "SyncPlan":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as json_exc:
            raise InvalidInputError(f"Sync plan is not valid JSON: {json_exc}") from json_exc
        return cls.from_dict(data)


@dataclass
class SyncError:
    operation: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"operation": self.operation, "message": self.message}


@dataclass
class SyncResult:
    """Outcome of one execute_sync invocation, filled additively as batches complete."""
    audit_log_id: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    mt_triggered: List[str] = field(default_factory=list)
    errors: List[SyncError] = field(default_factory=list)
    rate_limit_waits: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "mtTriggered": list(self.mt_triggered),
            "errors": [error.to_dict() for error in self.errors],
            "rateLimitWaits": self.rate_limit_waits,
            "auditLogId": self.audit_log_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)
