"""Presence merge engine and typing indicator derivation.

A snapshot maps a participant id to a presence entry ``{"metas": [...]}``,
one meta per connected session of that participant. Metas are opaque apart
from ``phx_ref``, used to match the same session across events, and the
``typing`` flag read by :func:`derive_typing`. Metas without a ``phx_ref`` are
matched by equality.

Both merge functions are pure. Diffs must be applied in arrival order; a
repeated diff is not detected.
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from phxchat.phoenix.messages import Member

logger = logging.getLogger("phxchat.presence")

Snapshot = dict[str, dict[str, Any]]


def _ref(meta: Any) -> Any:
    if isinstance(meta, Mapping):
        return meta.get("phx_ref")
    return None


def _same_meta(a: Any, b: Any) -> bool:
    ref_a, ref_b = _ref(a), _ref(b)
    if ref_a is not None or ref_b is not None:
        return ref_a == ref_b
    return a == b


def _contains(metas: list[Any], meta: Any) -> bool:
    return any(_same_meta(candidate, meta) for candidate in metas)


def _metas(entry: Any) -> list[Any]:
    if isinstance(entry, Mapping):
        return list(entry.get("metas") or [])
    return []


def sync_state(current: Mapping[str, Any], state: Mapping[str, Any]) -> Snapshot:
    """Reconcile a full presence state against the current snapshot.

    The result holds exactly the participants of ``state``. Metas already in
    the snapshot are kept as they are, new ones are added and missing ones are
    dropped, by turning the difference into a diff for :func:`sync_diff`.
    """
    joins: dict[str, Any] = {}
    leaves: dict[str, Any] = {}

    for key, presence in current.items():
        if key not in state:
            leaves[key] = presence

    for key, new_presence in state.items():
        current_presence = current.get(key)
        if current_presence is None:
            joins[key] = new_presence
            continue

        new_metas = _metas(new_presence)
        current_metas = _metas(current_presence)
        joined = [meta for meta in new_metas if not _contains(current_metas, meta)]
        left = [meta for meta in current_metas if not _contains(new_metas, meta)]
        if joined:
            joins[key] = {**new_presence, "metas": joined}
        if left:
            leaves[key] = {**current_presence, "metas": left}

    return sync_diff(current, {"joins": joins, "leaves": leaves})


def sync_diff(current: Mapping[str, Any], diff: Mapping[str, Any]) -> Snapshot:
    """Apply a presence diff: leaves first, then joins.

    Applying leaves first lets a leave and join of the same session (a meta
    update) land as a replacement. Participants left without metas are removed.
    """
    state: Snapshot = copy.deepcopy(dict(current))

    for key, left in (diff.get("leaves") or {}).items():
        entry = state.get(key)
        if entry is None:
            continue
        removed = _metas(left)
        remaining = [meta for meta in _metas(entry) if not _contains(removed, meta)]
        if remaining:
            entry["metas"] = remaining
        else:
            del state[key]

    for key, joined in (diff.get("joins") or {}).items():
        metas = copy.deepcopy(_metas(joined))
        refs = {_ref(meta) for meta in metas} - {None}
        entry = state.get(key)
        if entry is None:
            if metas:
                state[key] = {**copy.deepcopy(dict(joined)), "metas": metas}
            continue
        # a joined meta supersedes the existing meta of the same session
        kept = [meta for meta in _metas(entry) if _ref(meta) is None or _ref(meta) not in refs]
        state[key] = {**entry, **copy.deepcopy(dict(joined)), "metas": kept + metas}

    return state


def typing_participants(snapshot: Mapping[str, Any]) -> list[str]:
    """Participant ids with at least one typing session, in snapshot order."""
    return [
        key
        for key, presence in snapshot.items()
        if any(isinstance(meta, Mapping) and meta.get("typing") for meta in _metas(presence))
    ]


def derive_typing(snapshot: Mapping[str, Any], members: Mapping[str, Member]) -> str:
    """Comma separated display names of typing participants, or an empty string.

    Participants missing from the membership directory are skipped.
    """
    names = []
    for participant_id in typing_participants(snapshot):
        member = members.get(participant_id)
        if member is None:
            logger.debug("Typing participant %s is not a known member", participant_id)
            continue
        names.append(member.display_name)
    return ", ".join(names)
