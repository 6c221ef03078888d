"""
Engine Module - The chat synchronization engine

ChatSyncEngine is the context object owning every store and controller. It
accepts inbound commands from the UI, inbound data from the REST backend and
the push stream, and publishes full or partial snapshots to subscribers
whenever state changes. All mutations run on the event loop thread and
complete before the next input is processed.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from ..config import SyncSettings
from ..utils.performance import TimingProfiler
from .backend import ChatBackend
from .connection import ConnectionSupervisor
from .errors import BackendError, EventDecodeError
from .events import decode_event
from .models import Channel, ConnectionState, ConnectionStatus, Post, Reaction
from .optimistic import OptimisticSendTracker
from .pagination import FIRST_PAGE, PageRequest, PaginationController
from .presence import UnreadPresenceAggregator
from .reactions import ReactionStore
from .reconciler import Reconciler
from .router import (
    ALL_TOPICS,
    TOPIC_CHANNELS,
    TOPIC_CONNECTION,
    TOPIC_PRESENCE,
    TOPIC_REACTIONS,
    TOPIC_THREAD,
    TOPIC_TIMELINE,
    TOPIC_TYPING,
    TOPIC_UNREADS,
    EventRouter,
)
from .timeline import TimelineStore

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class ChatSyncEngine:
    """
    Keeps the active channel's timeline, the open thread, reactions, typing
    state and unread counters consistent across REST pages, optimistic sends
    and push events arriving in any order.
    """

    def __init__(self,
                 backend: ChatBackend,
                 settings: Optional[SyncSettings] = None,
                 supervisor: Optional[ConnectionSupervisor] = None,
                 clock: Optional[Callable[[], int]] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        """
        Initialize the engine

        Args:
            backend: REST collaborator
            settings: Engine settings (defaults apply when omitted)
            supervisor: Push-stream supervisor; the engine registers itself as its callbacks
            clock: Epoch-millisecond clock stamping optimistic posts
            id_factory: Pending ID generator for optimistic posts
        """
        self.settings = settings or SyncSettings()
        self.backend = backend
        self.supervisor = supervisor

        self.store = TimelineStore()
        self.reactions = ReactionStore()
        self.reconciler = Reconciler(max_clock_skew_ms=int(self.settings.echo_clock_skew * 1000))
        self.tracker = OptimisticSendTracker(self.store, id_factory=id_factory, clock=clock)
        self.aggregator = UnreadPresenceAggregator(typing_timeout=self.settings.typing_timeout)
        self.pagination = PaginationController(page_size=self.settings.page_size)
        self.router = EventRouter(
            self.store,
            self.tracker,
            self.reconciler,
            self.reactions,
            self.aggregator,
            local_user_id=self.settings.user_id,
        )

        self.connection = ConnectionStatus()
        self.active_thread_id: Optional[str] = None

        self._listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._typing_reaper: Optional[asyncio.Task] = None

        if supervisor is not None:
            supervisor.attach(self.handle_event, self.connection_changed)

    @property
    def active_channel_id(self) -> Optional[str]:
        return self.pagination.active_channel_id

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the push stream and load the channel list"""
        if self.supervisor is not None:
            self.supervisor.start()
        if self._typing_reaper is None:
            self._typing_reaper = asyncio.create_task(self._reap_typing())
        self._spawn(self._fetch_channels(), "fetch channels")

    async def wait_idle(self) -> None:
        """Wait until every spawned request (and anything it spawned) has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop background work and release the backend"""
        await self._stop_background()
        await self.backend.aclose()

    async def sign_out(self) -> None:
        """Drop the connection and forget all state, channels included"""
        await self._stop_background()
        self.store.clear()
        self.reactions.clear()
        self.tracker.reset()
        self.aggregator.reset()
        self.pagination.reset()
        self.active_thread_id = None
        self.connection = ConnectionStatus(ConnectionState.TERMINATED)
        logger.info("Signed out; all chat state cleared")
        self._notify(set(ALL_TOPICS))

    async def _stop_background(self) -> None:
        if self.supervisor is not None:
            await self.supervisor.stop()
        if self._typing_reaper is not None:
            self._typing_reaper.cancel()
            try:
                await self._typing_reaper
            except asyncio.CancelledError:
                pass
            self._typing_reaper = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─── Inbound commands ─────────────────────────────────────────

    def open_channel(self, channel_id: str) -> None:
        """
        Switch the active channel and fetch its newest page

        The previous channel's timeline and any open thread are evicted.
        A page still in flight for the previous channel is discarded when it
        arrives.
        """
        previous = self.active_channel_id
        if previous is not None and previous != channel_id:
            self.store.drop_channel(previous)
        if self.active_thread_id is not None:
            self.store.close_thread(self.active_thread_id)
            self.active_thread_id = None
        self.store.clear_threads()

        self.aggregator.set_active(channel_id)
        request = self.pagination.begin(channel_id)
        logger.info(f"Opened channel {channel_id}")
        self._spawn(self._fetch_page(request), f"fetch {request!r}")
        self._notify({TOPIC_TIMELINE, TOPIC_THREAD, TOPIC_TYPING})
        self.mark_read(channel_id)

    def load_older_posts(self, channel_id: Optional[str] = None) -> bool:
        """
        Request the next older page of the active channel

        Returns:
            False if nothing was requested (not active, no more history, or already loading)
        """
        request = self.pagination.request_older(channel_id or self.active_channel_id)
        if request is None:
            logger.debug(f"No older page requested for {channel_id or self.active_channel_id}")
            return False
        self._spawn(self._fetch_page(request), f"fetch {request!r}")
        self._notify({TOPIC_TIMELINE})
        return True

    def send_message(self, channel_id: str, body: str, root_id: str = "") -> Optional[str]:
        """
        Show a message immediately as pending and send it

        Returns:
            The pending ID, or None for an empty message
        """
        if not body or not body.strip():
            return None
        send = self.tracker.submit(channel_id, self.settings.user_id, body, root_id)
        self._spawn(self._create_post(send.pending_id, send.channel_id, send.body, send.root_id), "create post")
        self._notify({TOPIC_THREAD} if root_id else {TOPIC_TIMELINE})
        return send.pending_id

    def retry_send(self, pending_id: str) -> Optional[str]:
        """
        Re-send a failed message under a fresh pending ID

        Returns:
            The new pending ID, or None if ``pending_id`` is not a failed send
        """
        send = self.tracker.retry(pending_id)
        if send is None:
            return None
        logger.info(f"Retrying send {pending_id} as {send.pending_id}")
        self._spawn(self._create_post(send.pending_id, send.channel_id, send.body, send.root_id), "retry post")
        self._notify({TOPIC_THREAD} if send.root_id else {TOPIC_TIMELINE})
        return send.pending_id

    def open_thread(self, root_id: str) -> None:
        """Open a thread view and fetch it fresh; replaces any open thread"""
        if self.active_thread_id is not None and self.active_thread_id != root_id:
            self.store.close_thread(self.active_thread_id)

        root = self.store.find_post(root_id)
        channel_id = root.channel_id if root is not None else (self.active_channel_id or "")
        thread = self.store.open_thread(root_id, channel_id)
        self.active_thread_id = root_id
        if thread.channel_id:
            self.tracker.rematerialize(thread.channel_id)

        logger.info(f"Opened thread {root_id}")
        self._spawn(self._fetch_thread(root_id), f"fetch thread {root_id}")
        self._notify({TOPIC_THREAD})

    def close_thread(self) -> None:
        if self.active_thread_id is None:
            return
        self.store.close_thread(self.active_thread_id)
        self.active_thread_id = None
        self._notify({TOPIC_THREAD})

    def mark_read(self, channel_id: str) -> None:
        """Zero a channel's counters now and tell the server in the background"""
        if self.aggregator.mark_read(channel_id):
            self._notify({TOPIC_UNREADS})
        self._spawn(self._mark_read_remote(channel_id), f"mark {channel_id} read")

    def send_typing(self, channel_id: str, root_id: str = "") -> bool:
        if self.supervisor is None or not self.connection.connected:
            return False
        self._spawn(self.supervisor.send_typing(channel_id, root_id), "send typing")
        return True

    def refresh_unreads(self) -> None:
        channel_ids = list(self.aggregator.channels)
        if not channel_ids:
            return
        self._spawn(self._fetch_unreads(channel_ids), "fetch unreads")

    # ─── Inbound server data ──────────────────────────────────────

    def history_page(self,
                     channel_id: str,
                     posts: Iterable[Post],
                     has_more: bool,
                     page: Optional[int] = None,
                     request_id: Optional[int] = None) -> bool:
        """
        Apply a page of channel history

        Args:
            channel_id: Channel the page belongs to
            posts: Posts of the page
            has_more: Whether older pages exist
            page: Page index (0 is the newest), when known
            request_id: Originating request, when known

        Returns:
            False if the page was stale and discarded
        """
        kind = self.pagination.resolve(channel_id, page, request_id)
        if kind is None:
            logger.debug(f"Discarded stale page for {channel_id} (page={page}, request={request_id})")
            return False

        posts = list(posts)
        self._confirm_echoes(channel_id, posts)
        if kind == FIRST_PAGE:
            self.store.load_page(channel_id, posts, has_more)
            self.tracker.rematerialize(channel_id)
        else:
            added = self.store.prepend_older(channel_id, posts, has_more)
            logger.debug(f"Merged {added} older posts into {channel_id}")
        self.pagination.complete(kind, has_more)

        self.reactions.retain_posts(self.store.held_post_ids())
        self._request_reactions([p.id for p in posts if p.id and not p.is_reply])
        self._notify({TOPIC_TIMELINE, TOPIC_REACTIONS})
        return True

    def thread_page(self, root_id: str, posts: Iterable[Post]) -> bool:
        """
        Apply a fetched thread (root plus replies)

        Returns:
            False if the thread is no longer open
        """
        if root_id != self.active_thread_id:
            logger.debug(f"Discarded stale thread page for {root_id}")
            return False

        posts = list(posts)
        thread = self.store.thread(root_id)
        channel_id = thread.channel_id if thread else ""
        if not channel_id and posts:
            channel_id = posts[0].channel_id
        self._confirm_echoes(channel_id, [p for p in posts if p.root_id == root_id])
        self.store.load_thread(root_id, posts)
        if channel_id:
            self.tracker.rematerialize(channel_id)

        self._request_reactions([p.id for p in posts if p.id])
        self._notify({TOPIC_THREAD, TOPIC_REACTIONS})
        return True

    def send_confirmed(self, pending_id: str, post: Post) -> None:
        """Replace a pending post with its server copy; idempotent if the echo already confirmed it"""
        if not self.tracker.confirm(pending_id, post):
            if post.is_reply:
                self.store.insert_thread_reply(post)
            else:
                self.store.insert_live(post.channel_id, post)
        topics = {TOPIC_THREAD} if post.is_reply else {TOPIC_TIMELINE}
        if self.aggregator.note_post(post.channel_id, post.created_at):
            topics.add(TOPIC_CHANNELS)
        self._notify(topics)

    def send_failed(self, pending_id: str, reason: str) -> None:
        send = self.tracker.get(pending_id)
        if send is None or not self.tracker.fail(pending_id, reason):
            return
        self._notify({TOPIC_THREAD} if send.root_id else {TOPIC_TIMELINE})

    def handle_event(self, event: Union[Any, Dict[str, Any], str, bytes]) -> Set[str]:
        """
        Apply one push event

        Args:
            event: A decoded event, or a raw frame (mapping, JSON text or bytes)

        Returns:
            Topics that changed
        """
        if isinstance(event, (dict, str, bytes)):
            try:
                event = decode_event(event)
            except EventDecodeError as e:
                logger.warning(f"Skipping undecodable event: {str(e)}")
                return set()

        try:
            topics = self.router.apply(event)
        except Exception as e:
            logger.error(f"Error applying {type(event).__name__}: {str(e)}", exc_info=True)
            return set()
        self._notify(topics)
        return topics

    def unread_snapshot(self, entries: Iterable[Dict[str, Any]]) -> None:
        if self.aggregator.apply_snapshot(entries):
            self._notify({TOPIC_UNREADS, TOPIC_CHANNELS})

    def channels_loaded(self, channels: Iterable[Union[Channel, Dict[str, Any]]]) -> None:
        records = [c if isinstance(c, Channel) else Channel.from_dict(c) for c in channels]
        self.aggregator.set_channels(records)
        self._notify({TOPIC_CHANNELS, TOPIC_UNREADS})

    def presence_loaded(self, statuses: Dict[str, str]) -> None:
        if self.aggregator.merge_presence(statuses):
            self._notify({TOPIC_PRESENCE})

    def reactions_loaded(self, post_id: str, reactions: Iterable[Reaction]) -> bool:
        """Replace a held post's reactions with a fetched snapshot"""
        if self.store.find_post(post_id) is None:
            return False
        self.reactions.replace_for_post(post_id, reactions)
        self._notify({TOPIC_REACTIONS})
        return True

    def connection_changed(self, status: ConnectionStatus, reconnected: bool = False) -> None:
        """
        Record a push-stream status change

        A reconnect triggers gap-fill: exactly one fresh first-page request for
        the active channel, plus the open thread and the unread counters.
        """
        self.connection = status.copy()
        self._notify({TOPIC_CONNECTION})
        if status.connected and reconnected:
            self._gap_fill()

    # ─── Outbound state ───────────────────────────────────────────

    def subscribe(self, callback: Listener, topics: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """
        Register a change listener

        Args:
            callback: Called with ``{topic: partial snapshot}`` for each change
            topics: Topics of interest; all topics when None

        Returns:
            A function removing the listener
        """
        wanted = frozenset(topics) if topics is not None else None
        if wanted is not None:
            unknown = wanted.difference(ALL_TOPICS)
            if unknown:
                raise ValueError(f"Unknown topics: {', '.join(sorted(unknown))}")
        entry = (callback, wanted)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def snapshot(self) -> Dict[str, Any]:
        return {topic: self.snapshot_part(topic) for topic in ALL_TOPICS}

    def snapshot_part(self, topic: str) -> Any:
        """
        Build one part of the outbound state

        Raises:
            ValueError: For an unknown topic
        """
        if topic == TOPIC_TIMELINE:
            part = self.store.snapshot_channel(self.active_channel_id)
            part["loading"] = self.pagination.is_loading()
            return part
        if topic == TOPIC_THREAD:
            return self.store.snapshot_thread(self.active_thread_id)
        if topic == TOPIC_UNREADS:
            return self.aggregator.unread_map()
        if topic == TOPIC_CHANNELS:
            channels = sorted(self.aggregator.channels.values(), key=lambda c: (-c.last_post_at, c.id))
            return [c.to_dict() for c in channels]
        if topic == TOPIC_CONNECTION:
            return self.connection.to_dict()
        if topic == TOPIC_PRESENCE:
            return dict(self.aggregator.presence)
        if topic == TOPIC_TYPING:
            return self.aggregator.typing_snapshot()
        if topic == TOPIC_REACTIONS:
            return self.reactions.snapshot()
        raise ValueError(f"Unknown topic: {topic}")

    def _notify(self, topics: Set[str]) -> None:
        if not topics or not self._listeners:
            return
        parts: Dict[str, Any] = {}
        for callback, wanted in list(self._listeners):
            relevant = topics if wanted is None else topics & wanted
            if not relevant:
                continue
            for topic in relevant:
                if topic not in parts:
                    parts[topic] = self.snapshot_part(topic)
            try:
                callback({topic: parts[topic] for topic in relevant})
            except Exception as e:
                logger.error(f"Error in state listener: {str(e)}", exc_info=True)

    # ─── Background work ──────────────────────────────────────────

    def _spawn(self, coro, name: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"No running event loop; {name} skipped")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task failed: {str(exc)}", exc_info=exc)

    def _confirm_echoes(self, channel_id: str, posts: List[Post]) -> None:
        for post in posts:
            if self.store.find_post(post.id) is not None:
                continue
            send = self.reconciler.match(post, self.tracker.outstanding(channel_id))
            if send is not None:
                self.tracker.confirm(send.pending_id, post)

    def _gap_fill(self) -> None:
        request = self.pagination.refresh()
        if request is not None:
            logger.info(f"Gap-fill: refetching newest page of {request.channel_id}")
            self._spawn(self._fetch_page(request), f"gap-fill {request!r}")
        if self.active_thread_id is not None:
            self._spawn(self._fetch_thread(self.active_thread_id), f"gap-fill thread {self.active_thread_id}")
        self.refresh_unreads()

    def _request_reactions(self, post_ids: List[str]) -> None:
        if post_ids:
            self._spawn(self._fetch_reactions(post_ids), "fetch reactions")

    @TimingProfiler.async_profile
    async def _fetch_page(self, request: PageRequest) -> None:
        try:
            posts = await self.backend.fetch_posts(request.channel_id, request.page, request.per_page)
            has_more = len(posts) >= request.per_page
        except BackendError as e:
            logger.warning(f"Fetching page {request.page} of {request.channel_id} failed: {str(e)}")
            self.pagination.fail(request)
            self._notify({TOPIC_TIMELINE})
            return
        except Exception as e:
            logger.error(f"Unexpected error fetching page {request.page} of {request.channel_id}: {str(e)}", exc_info=True)
            self.pagination.fail(request)
            self._notify({TOPIC_TIMELINE})
            return
        self.history_page(request.channel_id, posts, has_more, page=request.page, request_id=request.request_id)

    async def _fetch_thread(self, root_id: str) -> None:
        try:
            posts = await self.backend.fetch_thread(root_id)
        except BackendError as e:
            logger.warning(f"Fetching thread {root_id} failed: {str(e)}")
            return
        except Exception as e:
            logger.error(f"Unexpected error fetching thread {root_id}: {str(e)}", exc_info=True)
            return
        self.thread_page(root_id, posts)

    async def _create_post(self, pending_id: str, channel_id: str, body: str, root_id: str) -> None:
        try:
            post = await self.backend.create_post(channel_id, body, root_id, client_token=pending_id)
        except BackendError as e:
            logger.warning(f"Send {pending_id} rejected: {str(e)}")
            self.send_failed(pending_id, str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected error sending {pending_id}: {str(e)}", exc_info=True)
            self.send_failed(pending_id, str(e) or type(e).__name__)
            return
        self.send_confirmed(pending_id, post)

    async def _mark_read_remote(self, channel_id: str) -> None:
        try:
            await self.backend.mark_read(channel_id)
        except BackendError as e:
            logger.warning(f"Marking {channel_id} read failed: {str(e)}")
        except Exception as e:
            logger.error(f"Unexpected error marking {channel_id} read: {str(e)}", exc_info=True)

    async def _fetch_unreads(self, channel_ids: List[str]) -> None:
        try:
            entries = await self.backend.fetch_unreads(channel_ids)
        except BackendError as e:
            logger.warning(f"Fetching unread counts failed: {str(e)}")
            return
        except Exception as e:
            logger.error(f"Unexpected error fetching unread counts: {str(e)}", exc_info=True)
            return
        self.unread_snapshot(entries)

    async def _fetch_channels(self) -> None:
        try:
            channels = await self.backend.fetch_channels()
        except BackendError as e:
            logger.warning(f"Fetching channels failed: {str(e)}")
            return
        except Exception as e:
            logger.error(f"Unexpected error fetching channels: {str(e)}", exc_info=True)
            return
        self.channels_loaded(channels)
        self.refresh_unreads()

    async def _fetch_reactions(self, post_ids: List[str]) -> None:
        try:
            reactions = await self.backend.fetch_reactions(post_ids)
        except BackendError as e:
            logger.warning(f"Fetching reactions failed: {str(e)}")
            return
        except Exception as e:
            logger.error(f"Unexpected error fetching reactions: {str(e)}", exc_info=True)
            return
        if reactions is None:
            return

        by_post: Dict[str, List[Reaction]] = {}
        for reaction in reactions:
            by_post.setdefault(reaction.post_id, []).append(reaction)
        held = self.store.held_post_ids()
        changed = False
        for post_id in post_ids:
            if post_id in held:
                self.reactions.replace_for_post(post_id, by_post.get(post_id, ()))
                changed = True
        if changed:
            self._notify({TOPIC_REACTIONS})

    async def _reap_typing(self) -> None:
        interval = max(self.settings.typing_timeout / 2, 0.1)
        while True:
            try:
                await asyncio.sleep(interval)
                if self.aggregator.prune_typing():
                    self._notify({TOPIC_TYPING})
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error pruning typing indicators: {str(e)}", exc_info=True)
