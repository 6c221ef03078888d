"""
Reactions Module - Set semantics for emoji reactions keyed by post
"""

from typing import Dict, Iterable, List, Set

from .models import Reaction


class ReactionStore:
    """Per-post reaction sets; adding a present triple or removing an absent one is a no-op"""

    def __init__(self):
        self._by_post: Dict[str, Set[Reaction]] = {}

    def add(self, reaction: Reaction) -> bool:
        reactions = self._by_post.setdefault(reaction.post_id, set())
        if reaction in reactions:
            return False
        reactions.add(reaction)
        return True

    def remove(self, reaction: Reaction) -> bool:
        reactions = self._by_post.get(reaction.post_id)
        if not reactions or reaction not in reactions:
            return False
        reactions.discard(reaction)
        if not reactions:
            del self._by_post[reaction.post_id]
        return True

    def replace_for_post(self, post_id: str, reactions: Iterable[Reaction]) -> None:
        """
        Replace a post's reactions with an authoritative snapshot

        Args:
            post_id: Post ID
            reactions: Reactions fetched for the post (entries for other posts are ignored)
        """
        fresh = {r for r in reactions if r.post_id == post_id}
        if fresh:
            self._by_post[post_id] = fresh
        else:
            self._by_post.pop(post_id, None)

    def drop_post(self, post_id: str) -> bool:
        return self._by_post.pop(post_id, None) is not None

    def retain_posts(self, post_ids: Set[str]) -> None:
        """Forget reactions for posts no longer held by the timeline store"""
        for post_id in list(self._by_post):
            if post_id not in post_ids:
                del self._by_post[post_id]

    def for_post(self, post_id: str) -> List[Reaction]:
        return sorted(self._by_post.get(post_id, ()))

    def clear(self) -> None:
        self._by_post.clear()

    def snapshot(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            post_id: [r.to_dict() for r in sorted(reactions)]
            for post_id, reactions in self._by_post.items()
        }
