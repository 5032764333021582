"""RSS feed parsing into a raw, loosely-typed feed structure."""

from __future__ import annotations

import logging

# Bandit: parsing handled via defusedxml safe APIs
import xml.etree.ElementTree as ET  # nosec B405
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Union

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring as safe_fromstring, ParseError as DefusedXMLParseError

from ..exceptions import MalformedFeed

logger = logging.getLogger(__name__)

ITUNES_NS = "{http://www.itunes.com/dtds/podcast-1.0.dtd}"


@dataclass
class RawImage:
    """Contents of an RSS <image> element."""

    url: str = ""
    title: str = ""


@dataclass
class RawEnclosure:
    """Attributes of an RSS <enclosure> element."""

    url: str = ""
    length: str = ""
    type: str = ""


@dataclass
class RawItem:
    """Contents of an RSS <item> element."""

    title: str = ""
    description: str = ""
    pub_date: str = ""
    enclosure: RawEnclosure = field(default_factory=RawEnclosure)
    image: RawImage = field(default_factory=RawImage)


@dataclass
class RawFeed:
    """Parsed RSS feed with every value kept as the string found in the document.

    Attributes:
        url: Where the feed was fetched from ("" when parsed from memory).
        version: The <rss version="..."> attribute.
        items: One RawItem per <item>, in document order.
    """

    url: str = ""
    version: str = ""
    title: str = ""
    language: str = ""
    description: str = ""
    pub_date: str = ""
    image: RawImage = field(default_factory=RawImage)
    items: List[RawItem] = field(default_factory=list)


def _text(parent: Optional[ET.Element], tag: str) -> str:
    if parent is None:
        return ""
    el = parent.find(tag)
    if el is None:
        return ""
    return "".join(el.itertext())


def _parse_image(parent: ET.Element) -> RawImage:
    """Read <image> from a channel or item, with itunes:image as a URL fallback."""
    image_el = parent.find("image")
    image = RawImage()
    if image_el is not None:
        image.url = _text(image_el, "url")
        image.title = _text(image_el, "title") or image_el.attrib.get("title", "")
    if not image.url.strip():
        itunes_image = parent.find(f"{ITUNES_NS}image")
        if itunes_image is not None:
            image.url = itunes_image.attrib.get("href", "")
    return image


def _parse_item(item: ET.Element) -> RawItem:
    raw = RawItem(
        title=_text(item, "title"),
        description=_text(item, "description"),
        pub_date=_text(item, "pubDate"),
        image=_parse_image(item),
    )
    enclosure = item.find("enclosure")
    if enclosure is not None:
        raw.enclosure = RawEnclosure(
            url=enclosure.attrib.get("url", ""),
            length=enclosure.attrib.get("length", ""),
            type=enclosure.attrib.get("type", ""),
        )
    return raw


def parse_feed(source: Union[bytes, BinaryIO], url: str = "") -> RawFeed:
    """Parse RSS 2.0 XML into a RawFeed.

    Unknown (namespaced or not) elements are ignored and missing optional
    elements yield empty strings. Dates, URLs and MIME types are not
    interpreted here.

    Args:
        source: Raw XML bytes or a binary file-like object
        url: URL the feed was fetched from, recorded on the result

    Returns:
        RawFeed mirroring the channel, its image, and its items

    Raises:
        MalformedFeed: If the document is not well-formed XML, uses forbidden
            constructs (DTDs, entity expansion), or its root is not <rss>
    """
    xml_bytes = source if isinstance(source, (bytes, bytearray)) else source.read()
    try:
        root = safe_fromstring(xml_bytes)
    except (DefusedXMLParseError, DefusedXmlException, ValueError, LookupError) as exc:
        raise MalformedFeed(f"invalid feed XML: {exc}") from exc

    if root is None or root.tag != "rss":
        tag = root.tag if root is not None else None
        raise MalformedFeed(f"expected <rss> root element, got <{tag}>")

    feed = RawFeed(url=url, version=root.attrib.get("version", ""))
    channel = root.find("channel")
    if channel is None:
        logger.debug("Feed %s has no <channel>; returning empty feed", url or "<memory>")
        return feed

    feed.title = _text(channel, "title")
    feed.language = _text(channel, "language")
    feed.description = _text(channel, "description")
    feed.pub_date = _text(channel, "pubDate")
    feed.image = _parse_image(channel)
    feed.items = [_parse_item(item) for item in channel.findall("item")]
    logger.debug("Parsed feed %s with %d items", url or "<memory>", len(feed.items))
    return feed
