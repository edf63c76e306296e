"""
Reconciliation of the local key inventory with the remote term set.

compute_plan is a pure function: given the same inputs it returns an equal
plan, and the plan's JSON form is byte-identical across runs.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from termsync.errors import InvalidInputError
from termsync.models import (
    LocalKey,
    PlanStats,
    RemoteTerm,
    SyncPlan,
    TermUpdate,
    TranslationEntry,
)

CONTEXT_SEPARATOR = "\n---\n"
MAX_CONTEXT_SNIPPETS = 2
MAX_REFERENCE_PATHS = 3
MAX_PATH_TAGS = 2
MAX_COMMENT_EXAMPLES = 2

# Directory names that mark a feature area worth tagging.
FEATURE_DIRECTORIES = ("components", "pages", "views", "layouts", "features")


@dataclass(frozen=True)
class DiffOptions:
    delete_extraneous: bool = False
    include_langs: Tuple[str, ...] = field(default_factory=tuple)


def extract_context(key: LocalKey) -> str:
    """Join the first usage snippets into a context string ("" when none)."""
    snippets = [usage.context for usage in key.files if usage.context][:MAX_CONTEXT_SNIPPETS]
    return CONTEXT_SEPARATOR.join(snippets)


def extract_reference(key: LocalKey) -> str:
    """Comma-join up to three distinct usage file paths."""
    paths = list(dict.fromkeys(usage.path for usage in key.files))
    return ", ".join(paths[:MAX_REFERENCE_PATHS])


def _feature_directory(path: str) -> Optional[str]:
    for part in path.replace("\\", "/").split("/"):
        if part.lower() in FEATURE_DIRECTORIES:
            return part
    return None


def extract_tags(key: LocalKey) -> Tuple[str, ...]:
    """
    Derive the tag set for a key.

    Tags are the source framework, "dynamic" for dynamic keys, a
    "usage:<pattern>" marker and up to two feature-directory tags taken from
    the usage paths. Duplicates are dropped, first occurrence wins.
    """
    tags: List[str] = []
    if key.framework:
        tags.append(key.framework)
    if key.dynamic:
        tags.append("dynamic")
    if key.usage:
        tags.append(f"usage:{key.usage}")

    path_tags = [tag for tag in (_feature_directory(usage.path) for usage in key.files) if tag]
    tags.extend(path_tags[:MAX_PATH_TAGS])
    return tuple(dict.fromkeys(tags))


def generate_comment(key: LocalKey) -> str:
    """Build a translator-facing comment from the phrase, usage count and examples."""
    comments: List[str] = []
    if key.phrase and key.phrase != key.key:
        comments.append(f'Phrase: "{key.phrase}"')
    if len(key.files) > 1:
        comments.append(f"Used in {len(key.files)} files")
    if key.examples:
        comments.append(f"Examples: {', '.join(key.examples[:MAX_COMMENT_EXAMPLES])}")
    return "; ".join(comments)


def tags_equal(left: Iterable[str], right: Iterable[str]) -> bool:
    """Order-independent tag comparison."""
    return set(left) == set(right)


def build_add_term(key: LocalKey) -> RemoteTerm:
    return RemoteTerm(
        term=key.key,
        context=extract_context(key),
        reference=extract_reference(key),
        tags=extract_tags(key),
        comment=generate_comment(key),
    )


def calculate_term_updates(key: LocalKey, remote: RemoteTerm) -> Dict[str, object]:
    """
    Diff the derived fields of a local key against its remote term.

    A field is only proposed when the local side derives a non-empty value
    that differs from the remote one; an empty derivation never clears remote
    data.
    """
    updates: Dict[str, object] = {}

    context = extract_context(key)
    if context and context != remote.context:
        updates["context"] = context

    reference = extract_reference(key)
    if reference and reference != remote.reference:
        updates["reference"] = reference

    tags = extract_tags(key)
    if tags and not tags_equal(tags, remote.tags):
        updates["tags"] = tags

    comment = generate_comment(key)
    if comment and comment != remote.comment:
        updates["comment"] = comment

    return updates


def deduplicate_local_keys(local_keys: Iterable[LocalKey]) -> Dict[str, LocalKey]:
    """Index local keys by identifier; the last record wins, first position is kept."""
    index: Dict[str, LocalKey] = {}
    for key in local_keys:
        if not isinstance(key, LocalKey):
            raise InvalidInputError(f"Expected LocalKey, got {type(key).__name__}")
        if not key.key:
            raise InvalidInputError("Local key with an empty identifier")
        index[key.key] = key
    return index


def index_remote_terms(remote_terms: Iterable[RemoteTerm]) -> Dict[str, RemoteTerm]:
    index: Dict[str, RemoteTerm] = {}
    for term in remote_terms:
        if not isinstance(term, RemoteTerm):
            raise InvalidInputError(f"Expected RemoteTerm, got {type(term).__name__}")
        if not term.term:
            raise InvalidInputError("Remote term with an empty identifier")
        index[term.term] = term
    return index


def build_translation_map(
        entries: Iterable[TranslationEntry],
        include_langs: Sequence[str]
) -> Dict[str, Dict[str, str]]:
    """
    Build the sparse (language -> term -> content) matrix for the included languages.

    Entries for other languages and entries with empty content are skipped.
    """
    matrix: Dict[str, Dict[str, str]] = {lang: {} for lang in include_langs}
    for entry in entries:
        if entry.language in matrix and entry.content:
            matrix[entry.language][entry.term] = entry.content
    return matrix


def compute_plan(
        local_keys: Iterable[LocalKey],
        remote_terms: Iterable[RemoteTerm],
        remote_translations: Mapping[str, Mapping[str, str]],
        options: DiffOptions
) -> SyncPlan:
    """
    Classify local/remote discrepancies into a SyncPlan.

    Args:
        local_keys: The detector's keys; duplicates resolve last-write-wins.
        remote_terms: Snapshot of the remote term list.
        remote_translations: language -> {term: content}, restricted to the
            included languages.
        options: Deletion switch and included languages.

    Returns:
        The immutable plan. Adds and updates follow local insertion order,
        deletes follow remote insertion order.
    """
    local_index = deduplicate_local_keys(local_keys)
    remote_index = index_remote_terms(remote_terms)
    include_langs = list(dict.fromkeys(options.include_langs))

    add_terms: List[RemoteTerm] = []
    update_terms: List[TermUpdate] = []
    delete_terms: List[str] = []
    missing: Dict[str, List[str]] = {lang: [] for lang in include_langs}
    obsolete: Dict[str, List[str]] = {lang: [] for lang in include_langs}
    term_contexts: Dict[str, str] = {}

    for identifier, local_key in local_index.items():
        remote_term = remote_index.get(identifier)
        if remote_term is None:
            add_terms.append(build_add_term(local_key))
            for lang in include_langs:
                missing[lang].append(identifier)
            continue

        updates = calculate_term_updates(local_key, remote_term)
        if updates:
            update_terms.append(TermUpdate(term=identifier, updates=updates))
            if remote_term.context:
                term_contexts[identifier] = remote_term.context
        for lang in include_langs:
            if not remote_translations.get(lang, {}).get(identifier):
                missing[lang].append(identifier)

    if options.delete_extraneous:
        for identifier in remote_index:
            if identifier in local_index:
                continue
            delete_terms.append(identifier)
            if remote_index[identifier].context:
                term_contexts[identifier] = remote_index[identifier].context
            for lang in include_langs:
                if remote_translations.get(lang, {}).get(identifier):
                    obsolete[lang].append(identifier)

    missing_translations = {lang: tuple(keys) for lang, keys in missing.items()}
    return SyncPlan(
        add_terms=tuple(add_terms),
        update_terms=tuple(update_terms),
        delete_terms=tuple(delete_terms),
        missing_translations=missing_translations,
        obsolete_translations={lang: tuple(keys) for lang, keys in obsolete.items()},
        stats=PlanStats(
            adds=len(add_terms),
            updates=len(update_terms),
            deletes=len(delete_terms),
            missing=sum(len(keys) for keys in missing_translations.values()),
        ),
        term_contexts=term_contexts,
    )
