"""Thumbnail references for listing messages.

Messages carry a static listing image hosted on a CDN; the renderer only
decides which reference to send.
"""

from listing_notifier.config.environment import DEFAULT_LISTING_IMAGE_URL
from listing_notifier.domain.models import Listing

from .models import RenderError


class ThumbnailRenderer:
    """Returns the image reference sent with a listing notification."""

    def __init__(self, image_url: str = DEFAULT_LISTING_IMAGE_URL):
        self.image_url = image_url

    def render(self, listing: Listing) -> str:
        """Return the image URL for ``listing``.

        Raises:
            RenderError: If no image is configured
        """
        if not self.image_url or not self.image_url.strip():
            raise RenderError(f"No listing image configured for listing {listing.id}")
        return self.image_url.strip()
