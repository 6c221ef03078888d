"""
Timeline Module - Canonical ordered post collections per channel and per open thread

The store is the single source of truth for rendering. Every collection is
kept sorted by ``(created_at, id)`` and holds at most one entry per identity,
so inserts commute regardless of the order REST pages, optimistic sends and
push events arrive in.
"""

import logging
from bisect import bisect_left, bisect_right
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Any

from .models import Post

logger = logging.getLogger(__name__)


class PostCollection:
    """Sorted, identity-unique list of posts"""

    def __init__(self):
        self._posts: List[Post] = []
        self._keys: List[Tuple[int, str]] = []
        self._index: Dict[str, Post] = {}

    def __len__(self) -> int:
        return len(self._posts)

    def __iter__(self) -> Iterator[Post]:
        return iter(list(self._posts))

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def get(self, key: str) -> Optional[Post]:
        return self._index.get(key)

    def keys(self) -> Set[str]:
        return set(self._index)

    def _position(self, post: Post) -> int:
        i = bisect_left(self._keys, post.sort_key)
        if i >= len(self._posts) or self._posts[i] is not post:
            # created_at/key never mutate while a post is held, so this is a bug
            raise KeyError(f"Post {post.key} not found at its sort position")
        return i

    def insert(self, post: Post) -> bool:
        """
        Insert a post at its sorted position

        Args:
            post: Post to insert

        Returns:
            False if an entry with the same identity is already present
        """
        if not post.key or post.key in self._index:
            return False
        i = bisect_right(self._keys, post.sort_key)
        self._posts.insert(i, post)
        self._keys.insert(i, post.sort_key)
        self._index[post.key] = post
        return True

    def upsert(self, post: Post) -> bool:
        """Insert, or merge into the existing entry by last-write-wins"""
        existing = self._index.get(post.key)
        if existing is None:
            return self.insert(post)
        if existing is post:
            return False
        return existing.merge_from(post)

    def remove(self, key: str) -> Optional[Post]:
        post = self._index.get(key)
        if post is None:
            return None
        i = self._position(post)
        del self._posts[i]
        del self._keys[i]
        del self._index[key]
        return post

    def replace(self, old_key: str, new_post: Post) -> bool:
        """
        Swap an entry for another with a different identity

        The replacement keeps the old entry's index unless its sort key would
        break the ordering, in which case it is repositioned.

        Args:
            old_key: Identity of the entry to replace
            new_post: Replacement post

        Returns:
            False if ``old_key`` is not present
        """
        old = self._index.get(old_key)
        if old is None:
            return False

        i = self._position(old)
        new_key = new_post.sort_key
        fits_before = i == 0 or self._keys[i - 1] < new_key
        fits_after = i == len(self._keys) - 1 or new_key < self._keys[i + 1]
        del self._index[old_key]

        if fits_before and fits_after:
            self._posts[i] = new_post
            self._keys[i] = new_key
            self._index[new_post.key] = new_post
        else:
            del self._posts[i]
            del self._keys[i]
            self.insert(new_post)
        return True

    def pending(self) -> List[Post]:
        return [p for p in self._posts if p.is_pending]

    def clear(self) -> None:
        self._posts.clear()
        self._keys.clear()
        self._index.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self._posts]


class ChannelTimeline:
    """Top-level posts of one channel"""

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self.posts = PostCollection()
        self.has_more = True


class ThreadView:
    """Replies to one root post, materialized only while the thread is open"""

    def __init__(self, root_id: str, channel_id: str = ""):
        self.root_id = root_id
        self.channel_id = channel_id
        self.root: Optional[Post] = None
        self.replies = PostCollection()
        self.loaded = False


class TimelineStore:
    """
    Posts for loaded channels and open threads

    Channel timelines only ever contain top-level posts; replies live in the
    owning thread's collection and nowhere else. Operations against channels
    or threads that are not materialized are no-ops.
    """

    def __init__(self):
        self._channels: Dict[str, ChannelTimeline] = {}
        self._threads: Dict[str, ThreadView] = {}

    # ─── Channels ─────────────────────────────────────────────────

    def is_loaded(self, channel_id: str) -> bool:
        return channel_id in self._channels

    def channel_posts(self, channel_id: str) -> List[Post]:
        timeline = self._channels.get(channel_id)
        return list(timeline.posts) if timeline else []

    def has_more(self, channel_id: str) -> bool:
        timeline = self._channels.get(channel_id)
        return timeline.has_more if timeline else False

    def load_page(self, channel_id: str, posts: Iterable[Post], has_more: bool) -> None:
        """
        Seed (or reseed) a channel with its newest page

        Confirmed entries are replaced wholesale. Pending entries survive, since
        the server does not know about them yet.

        Args:
            channel_id: Channel ID
            posts: Newest page of posts
            has_more: Whether older pages exist
        """
        previous = self._channels.get(channel_id)
        timeline = ChannelTimeline(channel_id)
        timeline.has_more = has_more

        skipped = 0
        for post in posts:
            if post.is_reply or post.channel_id != channel_id:
                skipped += 1
                continue
            timeline.posts.upsert(post)

        if previous is not None:
            for post in previous.posts.pending():
                timeline.posts.insert(post)

        self._channels[channel_id] = timeline
        if skipped:
            logger.debug(f"Skipped {skipped} non top-level posts while loading {channel_id}")

    def prepend_older(self, channel_id: str, posts: Iterable[Post], has_more: bool) -> int:
        """
        Merge an older page without disturbing existing entries

        Args:
            channel_id: Channel ID
            posts: Older page of posts
            has_more: Whether even older pages exist

        Returns:
            Number of posts added; duplicates keep the copy already present
        """
        timeline = self._channels.get(channel_id)
        if timeline is None:
            return 0

        added = 0
        for post in posts:
            if post.is_reply or post.channel_id != channel_id:
                continue
            if timeline.posts.insert(post):
                added += 1
        timeline.has_more = has_more
        return added

    def insert_live(self, channel_id: str, post: Post) -> bool:
        timeline = self._channels.get(channel_id)
        if timeline is None or post.is_reply:
            return False
        return timeline.posts.upsert(post)

    def drop_channel(self, channel_id: str) -> None:
        self._channels.pop(channel_id, None)
        self.clear_threads(channel_id)

    # ─── Posts (any collection) ───────────────────────────────────

    def _collections(self) -> Iterator[PostCollection]:
        for timeline in self._channels.values():
            yield timeline.posts
        for thread in self._threads.values():
            yield thread.replies

    def find_post(self, key: str) -> Optional[Post]:
        for collection in self._collections():
            post = collection.get(key)
            if post is not None:
                return post
        for thread in self._threads.values():
            if thread.root is not None and thread.root.key == key:
                return thread.root
        return None

    def held_post_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for collection in self._collections():
            ids.update(collection.keys())
        ids.update(t.root.key for t in self._threads.values() if t.root is not None)
        return ids

    def update_post(self, post: Post) -> bool:
        """
        Apply an edit to every held copy of a post

        Returns:
            True if any copy changed; False if the post is not held or the edit is older
        """
        changed = False
        for collection in self._collections():
            existing = collection.get(post.key)
            if existing is not None and existing is not post:
                changed = existing.merge_from(post) or changed
        for thread in self._threads.values():
            if thread.root is not None and thread.root.key == post.key and thread.root is not post:
                changed = thread.root.merge_from(post) or changed
        return changed

    def remove_post(self, post_id: str) -> bool:
        removed = False
        for collection in self._collections():
            if collection.remove(post_id) is not None:
                removed = True
        if post_id in self._threads:
            del self._threads[post_id]
            removed = True
        return removed

    # ─── Pending entries ──────────────────────────────────────────

    def _collection_for(self, post: Post) -> Optional[PostCollection]:
        if post.is_reply:
            thread = self._threads.get(post.root_id)
            return thread.replies if thread else None
        timeline = self._channels.get(post.channel_id)
        return timeline.posts if timeline else None

    def _collection_holding(self, key: str) -> Optional[PostCollection]:
        for collection in self._collections():
            if key in collection:
                return collection
        return None

    def insert_pending(self, post: Post) -> bool:
        collection = self._collection_for(post)
        if collection is None:
            return False
        return collection.insert(post)

    def replace_pending(self, pending_id: str, server_post: Post) -> bool:
        """
        Replace a pending entry with its server-confirmed post

        If the confirmed post is already present (its echo was inserted on its
        own), the pending entry is dropped and the copies are merged instead.

        Args:
            pending_id: Pending ID of the provisional entry
            server_post: Confirmed post

        Returns:
            False if no pending entry with that ID is held
        """
        collection = self._collection_holding(pending_id)
        if collection is None:
            return False

        existing = collection.get(server_post.key)
        if existing is not None:
            collection.remove(pending_id)
            existing.merge_from(server_post)
            return True
        return collection.replace(pending_id, server_post)

    def mark_failed(self, pending_id: str, reason: str) -> bool:
        collection = self._collection_holding(pending_id)
        if collection is None:
            return False
        post = collection.get(pending_id)
        post.failure_reason = reason
        return True

    def remove_pending(self, pending_id: str) -> bool:
        collection = self._collection_holding(pending_id)
        if collection is None:
            return False
        return collection.remove(pending_id) is not None

    # ─── Threads ──────────────────────────────────────────────────

    def thread(self, root_id: str) -> Optional[ThreadView]:
        return self._threads.get(root_id)

    def open_thread(self, root_id: str, channel_id: str = "") -> ThreadView:
        thread = self._threads.get(root_id)
        if thread is None:
            thread = ThreadView(root_id, channel_id)
            root = self.find_post(root_id)
            if root is not None:
                thread.root = root
                thread.channel_id = thread.channel_id or root.channel_id
            self._threads[root_id] = thread
        return thread

    def load_thread(self, root_id: str, posts: Iterable[Post]) -> bool:
        """
        Fill an open thread from a fetched post list (root plus replies)

        Returns:
            False if the thread is not open
        """
        thread = self._threads.get(root_id)
        if thread is None:
            return False

        pending = thread.replies.pending()
        thread.replies.clear()
        for post in posts:
            if post.id == root_id:
                thread.root = post
                thread.channel_id = thread.channel_id or post.channel_id
            elif post.root_id == root_id:
                thread.replies.upsert(post)
        for post in pending:
            thread.replies.insert(post)
        thread.loaded = True
        return True

    def insert_thread_reply(self, post: Post) -> bool:
        thread = self._threads.get(post.root_id)
        if thread is None or not post.is_reply:
            return False
        return thread.replies.upsert(post)

    def close_thread(self, root_id: str) -> bool:
        return self._threads.pop(root_id, None) is not None

    def clear_threads(self, channel_id: Optional[str] = None) -> None:
        if channel_id is None:
            self._threads.clear()
            return
        for root_id, thread in list(self._threads.items()):
            if thread.channel_id == channel_id:
                del self._threads[root_id]

    def clear(self) -> None:
        self._channels.clear()
        self._threads.clear()

    # ─── Snapshots ────────────────────────────────────────────────

    def snapshot_channel(self, channel_id: Optional[str]) -> Dict[str, Any]:
        timeline = self._channels.get(channel_id) if channel_id else None
        return {
            "channel_id": channel_id,
            "posts": timeline.posts.to_list() if timeline else [],
            "has_more": timeline.has_more if timeline else False,
        }

    def snapshot_thread(self, root_id: Optional[str]) -> Dict[str, Any]:
        thread = self._threads.get(root_id) if root_id else None
        return {
            "root_id": root_id,
            "root": thread.root.to_dict() if thread and thread.root else None,
            "replies": thread.replies.to_list() if thread else [],
            "loaded": thread.loaded if thread else False,
        }
