"""Multi-way differ over N transcriptions of the same page.

Pairwise edit alignments on block fingerprints are folded into a single
ordered sequence of alignment groups with a union-find keyed on
(input rank, block position). Matched blocks are united first. Blocks still
alone then join an equal block of another input, even when the two inputs
disagree on reading order. Substituted blocks (same document position,
different content) are united last so disagreements land in one group.
A class never holds two blocks of the same input.
"""

from __future__ import annotations

import heapq
import json
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations

from critic.reconcile.models import AlignmentGroup, DiffResult, GroupMember, GroupStatus
from critic.transcriptions.fingerprint import equality_key
from critic.transcriptions.models import NormalizationPolicy, Transcription
from critic.utils.errors import DuplicateTranscription, FingerprintInconsistency, NoInputs
from critic.utils.events import log_event

logger = logging.getLogger("critic.core")

Node = tuple[int, int]


@dataclass(frozen=True)
class AlignedPair:
    """Two positions placed opposite each other by a pairwise alignment."""

    left: int
    right: int
    match: bool


def align_pair(left: Sequence[str], right: Sequence[str]) -> list[AlignedPair]:
    """Edit alignment of two fingerprint sequences.

    Substitution costs 0 on a fingerprint match and 1 otherwise; insertion
    and deletion cost 1. Backtracking prefers the diagonal, then deletion,
    so equal inputs always align identically.
    """

    rows, cols = len(left), len(right)
    cost = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(1, rows + 1):
        cost[i][0] = i
    for j in range(1, cols + 1):
        cost[0][j] = j
    for i in range(1, rows + 1):
        for j in range(1, cols + 1):
            substitution = 0 if left[i - 1] == right[j - 1] else 1
            cost[i][j] = min(
                cost[i - 1][j - 1] + substitution,
                cost[i - 1][j] + 1,
                cost[i][j - 1] + 1,
            )

    aligned: list[AlignedPair] = []
    i, j = rows, cols
    while i > 0 and j > 0:
        match = left[i - 1] == right[j - 1]
        if cost[i][j] == cost[i - 1][j - 1] + (0 if match else 1):
            aligned.append(AlignedPair(left=i - 1, right=j - 1, match=match))
            i, j = i - 1, j - 1
        elif cost[i][j] == cost[i - 1][j] + 1:
            i -= 1
        else:
            j -= 1
    aligned.reverse()
    return aligned


class _UnionFind:
    """Equivalence classes of blocks, each holding at most one block per input."""

    def __init__(self, nodes: list[Node]) -> None:
        self._parent: dict[Node, Node] = {node: node for node in nodes}
        self._inputs: dict[Node, set[int]] = {node: {node[0]} for node in nodes}

    def find(self, node: Node) -> Node:
        root = node
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[node] != root:
            self._parent[node], node = root, self._parent[node]
        return root

    def union(self, first: Node, second: Node) -> bool:
        root_a, root_b = self.find(first), self.find(second)
        if root_a == root_b:
            return True
        if self._inputs[root_a] & self._inputs[root_b]:
            return False
        keep, drop = min(root_a, root_b), max(root_a, root_b)
        self._parent[drop] = keep
        self._inputs[keep] |= self._inputs.pop(drop)
        return True

    def is_single(self, node: Node) -> bool:
        return len(self._inputs[self.find(node)]) == 1


def diff_transcriptions(
    page: str,
    transcriptions: Sequence[Transcription],
    *,
    policy: NormalizationPolicy | None = None,
    max_workers: int = 1,
) -> DiffResult:
    """Group the blocks of ``transcriptions`` into ordered alignment groups."""

    if not transcriptions:
        raise NoInputs(f"No transcriptions supplied for {page}", page=page)

    ranked = sorted(transcriptions, key=lambda item: item.username)
    for previous, current in zip(ranked, ranked[1:]):
        if previous.username == current.username:
            raise DuplicateTranscription(
                f"Two transcriptions of {page} by {current.username}",
                page=page,
                username=current.username,
            )

    _check_fingerprints(page, ranked, policy)

    sequences = [item.fingerprints() for item in ranked]
    pairs = list(combinations(range(len(ranked)), 2))
    alignments = _align_all(sequences, pairs, max_workers)

    nodes = [(rank, position) for rank, seq in enumerate(sequences) for position in range(len(seq))]
    classes = _UnionFind(nodes)
    for (first, second), aligned in zip(pairs, alignments):
        for pair in aligned:
            if pair.match:
                classes.union((first, pair.left), (second, pair.right))
    _unite_reorderings(sequences, nodes, classes)
    for (first, second), aligned in zip(pairs, alignments):
        for pair in aligned:
            if not pair.match:
                classes.union((first, pair.left), (second, pair.right))

    members_by_root: dict[Node, list[Node]] = {}
    for node in nodes:
        members_by_root.setdefault(classes.find(node), []).append(node)

    ordered_roots = _order_groups(sequences, classes, members_by_root)

    usernames = [item.username for item in ranked]
    groups: list[AlignmentGroup] = []
    for index, root in enumerate(ordered_roots):
        member_nodes = sorted(members_by_root[root])
        members = [
            GroupMember(
                username=usernames[rank],
                position=position,
                fingerprint=ranked[rank].blocks[position].fingerprint,
                content=ranked[rank].blocks[position].content,
            )
            for rank, position in member_nodes
        ]
        present = {rank for rank, _ in member_nodes}
        groups.append(
            AlignmentGroup(
                index=index,
                status=_classify(members, len(ranked)),
                members=members,
                absent=[name for rank, name in enumerate(usernames) if rank not in present],
            )
        )

    result = DiffResult(page=page, usernames=usernames, groups=groups)
    log_event(
        logger,
        logging.DEBUG,
        "diff",
        page=page,
        inputs=len(ranked),
        groups=len(groups),
        agreement=result.count("agreement"),
        partial=result.count("partial"),
        conflict=result.count("conflict"),
    )
    return result


def _unite_reorderings(
    sequences: list[list[str]], nodes: list[Node], classes: _UnionFind
) -> None:
    """Join blocks left unmatched to equal blocks of other inputs.

    Pairwise alignments only match blocks in a common order, so a transposed
    block would otherwise fall into a substitution. Candidates are tried in
    (input rank, position) order.
    """

    seen: dict[str, list[Node]] = {}
    for node in nodes:
        fingerprint = sequences[node[0]][node[1]]
        earlier = seen.setdefault(fingerprint, [])
        if classes.is_single(node):
            for candidate in earlier:
                if candidate[0] != node[0] and classes.union(candidate, node):
                    break
        earlier.append(node)


def _align_all(
    sequences: list[list[str]], pairs: list[tuple[int, int]], max_workers: int
) -> list[list[AlignedPair]]:
    if max_workers <= 1 or len(pairs) <= 1:
        return [align_pair(sequences[first], sequences[second]) for first, second in pairs]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(
            executor.map(
                lambda pair: align_pair(sequences[pair[0]], sequences[pair[1]]),
                pairs,
            )
        )


def _order_groups(
    sequences: list[list[str]],
    classes: _UnionFind,
    members_by_root: dict[Node, list[Node]],
) -> list[Node]:
    """Topologically order groups by every input's reading order.

    Ready groups are taken smallest-first by their earliest member, i.e. the
    position in the input with the lexicographically smallest username.
    Cycles caused by order disagreements are broken with the same key.
    """

    successors: dict[Node, set[Node]] = {root: set() for root in members_by_root}
    for rank, seq in enumerate(sequences):
        for position in range(1, len(seq)):
            before = classes.find((rank, position - 1))
            after = classes.find((rank, position))
            if before != after:
                successors[before].add(after)

    indegree = {root: 0 for root in members_by_root}
    for targets in successors.values():
        for target in targets:
            indegree[target] += 1

    sort_key = {root: min(members) for root, members in members_by_root.items()}
    ready = [(sort_key[root], root) for root, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    remaining = set(members_by_root)
    ordered: list[Node] = []

    while remaining:
        root: Node | None = None
        while ready:
            _, candidate = heapq.heappop(ready)
            if candidate in remaining:
                root = candidate
                break
        if root is None:
            root = min(remaining, key=lambda item: sort_key[item])
        remaining.discard(root)
        ordered.append(root)
        for target in sorted(successors[root]):
            indegree[target] -= 1
            if indegree[target] == 0 and target in remaining:
                heapq.heappush(ready, (sort_key[target], target))

    return ordered


def _classify(members: list[GroupMember], input_count: int) -> GroupStatus:
    fingerprints = {member.fingerprint for member in members}
    if len(fingerprints) > 1:
        return "conflict"
    if len(members) == input_count:
        return "agreement"
    return "partial"


def _check_fingerprints(
    page: str,
    transcriptions: list[Transcription],
    policy: NormalizationPolicy | None,
) -> None:
    """Fingerprint equality must coincide with the kinds' equality rules."""

    key_by_fingerprint: dict[str, tuple[str, str]] = {}
    fingerprint_by_key: dict[str, tuple[str, str]] = {}

    for transcription in transcriptions:
        for block in transcription.blocks:
            block_id = block.block_id(transcription.username)
            key = json.dumps(
                [block.content.kind, equality_key(block.content, policy)],
                sort_keys=True,
                ensure_ascii=False,
            )

            seen_key = key_by_fingerprint.get(block.fingerprint)
            if seen_key is not None and seen_key[0] != key:
                _raise_inconsistency(
                    page,
                    [seen_key[1], block_id],
                    "equal fingerprints for unequal content",
                )
            seen_fingerprint = fingerprint_by_key.get(key)
            if seen_fingerprint is not None and seen_fingerprint[0] != block.fingerprint:
                _raise_inconsistency(
                    page,
                    [seen_fingerprint[1], block_id],
                    "equal content with different fingerprints",
                )
            key_by_fingerprint.setdefault(block.fingerprint, (key, block_id))
            fingerprint_by_key.setdefault(key, (block.fingerprint, block_id))


def _raise_inconsistency(page: str, block_ids: list[str], reason: str) -> None:
    log_event(
        logger,
        logging.ERROR,
        "fingerprint_inconsistency",
        page=page,
        block_ids=block_ids,
        reason=reason,
    )
    raise FingerprintInconsistency(
        f"Fingerprint inconsistency on {page}: {reason}",
        page=page,
        block_ids=block_ids,
    )
