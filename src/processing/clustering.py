import re
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Set

from processing.normalizer import STOP_WORDS

_TOKEN = re.compile(r"[^\w\s]")


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def merge_overlapping(
    groups: Dict[str, Set[str]],
    threshold: float = 0.3,
) -> List[List[str]]:
    """
    groups: topic_id -> member conversation ids

    Topics whose member sets overlap with Jaccard >= threshold end up in the
    same cluster (transitively). Returns lists of topic ids, each in the
    order the topics were given.
    """
    topic_ids = list(groups)
    parent = {topic_id: topic_id for topic_id in topic_ids}

    def find(topic_id: str) -> str:
        while parent[topic_id] != topic_id:
            parent[topic_id] = parent[parent[topic_id]]
            topic_id = parent[topic_id]
        return topic_id

    for i, left in enumerate(topic_ids):
        for right in topic_ids[i + 1:]:
            if jaccard(groups[left], groups[right]) >= threshold:
                root_left, root_right = find(left), find(right)
                if root_left != root_right:
                    parent[root_right] = root_left

    clusters: dict[str, list[str]] = defaultdict(list)
    for topic_id in topic_ids:
        clusters[find(topic_id)].append(topic_id)

    return list(clusters.values())


def key_phrases(texts: Iterable[str], limit: int = 10) -> List[str]:
    """
    Most frequent two-word phrases, counted once per text. Phrases that
    contain a stop word or a word of three characters or fewer are skipped.
    """
    counts: Counter = Counter()
    for text in texts:
        words = _TOKEN.sub(" ", (text or "").lower()).split()
        phrases = set()
        for first, second in zip(words, words[1:]):
            if first in STOP_WORDS or second in STOP_WORDS:
                continue
            if len(first) <= 3 or len(second) <= 3:
                continue
            phrases.add(f"{first} {second}")
        counts.update(phrases)

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [phrase for phrase, _ in ranked[:limit]]
