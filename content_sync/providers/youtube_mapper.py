"""Pure mapping from YouTube video records to the generic content model."""

from .base import (
    MappedCategory,
    MappedContent,
    MappedItem,
    MappedStatistics,
    ProviderItem,
    Thumbnails,
    to_naive_utc,
)

CONTENT_TYPE = "youtube_video"
PLATFORM = "youtube"

# YouTube videoCategories for the US region
CATEGORY_NAMES: dict[str, str] = {
    "1": "Film & Animation",
    "2": "Autos & Vehicles",
    "10": "Music",
    "15": "Pets & Animals",
    "17": "Sports",
    "19": "Travel & Events",
    "20": "Gaming",
    "22": "People & Blogs",
    "23": "Comedy",
    "24": "Entertainment",
    "25": "News & Politics",
    "26": "Howto & Style",
    "27": "Education",
    "28": "Science & Technology",
    "29": "Nonprofits & Activism",
}


def determine_quality(thumbnails: Thumbnails) -> str:
    """Estimate video quality from the largest available thumbnail."""
    if thumbnails.maxres:
        return "4k"
    if thumbnails.standard or thumbnails.high:
        return "hd"
    return "sd"


def map_category(category_id: str | None) -> MappedCategory | None:
    if not category_id:
        return None
    return MappedCategory(category=CATEGORY_NAMES.get(category_id, "Other"))


def map_statistics(item: ProviderItem) -> MappedStatistics:
    stats = item.statistics
    if stats.view_count > 0:
        engagement = (stats.like_count + stats.comment_count) / stats.view_count * 100
    else:
        engagement = 0.0

    return MappedStatistics(
        views=stats.view_count,
        likes=stats.like_count,
        comments=stats.comment_count,
        shares=0,  # not exposed by the API
        engagement_rate=min(engagement, 100.0),
    )


def map_content(item: ProviderItem) -> MappedContent:
    thumbnails = item.thumbnails
    return MappedContent(
        content_type=CONTENT_TYPE,
        platform=PLATFORM,
        platform_id=item.id,
        title=item.title,
        description=item.description or None,
        thumbnail_url=thumbnails.high or thumbnails.medium or thumbnails.default,
        url=item.url,
        duration=item.duration_seconds,
        published_at=to_naive_utc(item.published_at),
        language=item.default_language,
        is_live=item.live_broadcast_content == "live",
        quality=determine_quality(thumbnails),
    )


class YouTubeContentMapper:
    """ContentMapper for YouTube videos."""

    def map_item(self, item: ProviderItem) -> MappedItem:
        return MappedItem(
            content=map_content(item),
            category=map_category(item.category_id),
            statistics=map_statistics(item),
        )
