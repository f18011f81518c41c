"""
Pagination walker for remote listings.

A listing is expressed as a page function::

    list_page(page_token: str, timeout: Optional[float]) -> (items, next_page_token)

seeded by the caller with the page size and any filter. The walker calls it
with the previous response's continuation token until the provider returns
an empty token. There is no page limit.
"""
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .errors import DeadlineExceeded, ExporterError, RemoteListError
from .tasks import Deadline

logger = logging.getLogger(__name__)

Page = Tuple[Sequence[Any], str]
PageFunction = Callable[[str, Optional[float]], Page]


def walk_pages(
    list_page: PageFunction,
    on_page: Callable[[Sequence[Any]], None],
    deadline: Optional[Deadline] = None,
    context: str = "",
) -> int:
    """
    Drive ``list_page`` until the continuation token is exhausted.

    Args:
        list_page: Page function (see module docstring)
        on_page: Called with the items of each page, in order
        deadline: Optional cycle deadline; checked before every call and
            passed to the provider as the call timeout
        context: Description used in error messages (resource, project, scope)

    Returns:
        Number of pages fetched

    Raises:
        DeadlineExceeded: If the deadline expires before the last page
        RemoteListError: If the provider call fails
    """
    deadline = deadline or Deadline()
    page_token = ""
    pages = 0
    while True:
        deadline.check(context)
        try:
            items, page_token = list_page(page_token, deadline.remaining())
        except ExporterError:
            raise
        except Exception as e:
            if deadline.expired:
                raise DeadlineExceeded(f"Deadline exceeded: {context}", original_error=e) from e
            raise RemoteListError(f"{context}: {e}" if context else str(e), original_error=e) from e
        pages += 1
        on_page(items)
        if not page_token:
            return pages


def list_all(list_page: PageFunction, deadline: Optional[Deadline] = None, context: str = "") -> List[Any]:
    """
    Return the concatenation of every page's items.

    Nothing is returned on failure: a listing that does not reach its last
    page raises instead of yielding a partial result.
    """
    items: List[Any] = []
    walk_pages(list_page, items.extend, deadline=deadline, context=context)
    return items


def count_all(list_page: PageFunction, deadline: Optional[Deadline] = None, context: str = "") -> int:
    """Return the total number of items across every page."""
    total = 0

    def add(page: Sequence[Any]) -> None:
        nonlocal total
        total += len(page)

    walk_pages(list_page, add, deadline=deadline, context=context)
    return total

