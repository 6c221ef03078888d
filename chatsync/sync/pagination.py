"""
Pagination Module - Backward history loading for the active channel

Page 0 is the newest page. Each request is stamped with an ID; responses are
accepted only while their request is still the in-flight one for the active
channel, so a response for a channel the user already left is dropped.
"""

import itertools
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

FIRST_PAGE = "first"
OLDER_PAGE = "older"


class PageRequest:
    """A history fetch issued for one channel"""

    def __init__(self, channel_id: str, page: int, per_page: int, request_id: int, kind: str):
        self.channel_id = channel_id
        self.page = page
        self.per_page = per_page
        self.request_id = request_id
        self.kind = kind

    def __repr__(self) -> str:
        return f"<PageRequest {self.kind} {self.channel_id} page={self.page} id={self.request_id}>"


class PaginationController:
    """Tracks the page cursor, ``has_more`` and in-flight requests of the active channel"""

    def __init__(self, page_size: int = 30):
        self.page_size = page_size
        self.active_channel_id: Optional[str] = None
        self.next_page = 0
        self.has_more = False
        self._in_flight: Dict[str, PageRequest] = {}
        self._ids = itertools.count(1)

    def _new_request(self, page: int, kind: str) -> PageRequest:
        request = PageRequest(self.active_channel_id, page, self.page_size, next(self._ids), kind)
        self._in_flight[kind] = request
        return request

    def is_loading(self, kind: Optional[str] = None) -> bool:
        if kind is None:
            return bool(self._in_flight)
        return kind in self._in_flight

    def begin(self, channel_id: str) -> PageRequest:
        """
        Switch to a channel and request its newest page

        Any request in flight for the previous channel becomes stale.
        """
        self.active_channel_id = channel_id
        self.next_page = 0
        self.has_more = True
        self._in_flight.clear()
        return self._new_request(0, FIRST_PAGE)

    def refresh(self) -> Optional[PageRequest]:
        """
        Re-request the newest page of the active channel (gap-fill)

        An older page in flight is abandoned, since the reloaded timeline
        restarts the cursor at page 1.
        """
        if self.active_channel_id is None:
            return None
        self._in_flight.clear()
        return self._new_request(0, FIRST_PAGE)

    def request_older(self, channel_id: str) -> Optional[PageRequest]:
        if channel_id != self.active_channel_id:
            return None
        if not self.has_more or self._in_flight:
            return None
        return self._new_request(self.next_page, OLDER_PAGE)

    def resolve(self, channel_id: str, page: Optional[int] = None, request_id: Optional[int] = None) -> Optional[str]:
        """
        Classify an arriving page

        Args:
            channel_id: Channel the page belongs to
            page: Page index, when the deliverer knows it
            request_id: ID of the originating request, when known

        Returns:
            FIRST_PAGE, OLDER_PAGE, or None if the page is stale and must be discarded
        """
        if channel_id != self.active_channel_id:
            return None

        if request_id is not None:
            for kind, request in self._in_flight.items():
                if request.request_id == request_id:
                    return kind
            return None

        if page is None:
            if FIRST_PAGE in self._in_flight:
                return FIRST_PAGE
            if OLDER_PAGE in self._in_flight:
                return OLDER_PAGE
            return FIRST_PAGE
        return FIRST_PAGE if page == 0 else OLDER_PAGE

    def complete(self, kind: str, has_more: bool) -> None:
        self._in_flight.pop(kind, None)
        self.has_more = has_more
        if kind == FIRST_PAGE:
            self.next_page = 1
        else:
            self.next_page += 1

    def fail(self, request: PageRequest) -> None:
        current = self._in_flight.get(request.kind)
        if current is not None and current.request_id == request.request_id:
            del self._in_flight[request.kind]
        logger.debug(f"Page request {request.request_id} for {request.channel_id} abandoned")

    def reset(self) -> None:
        self.active_channel_id = None
        self.next_page = 0
        self.has_more = False
        self._in_flight.clear()
