from typing import Optional
import logging

from lxml import etree # type: ignore

from epg_now.services.errors import EPGParseError
from epg_now.services.fetch_types import ChannelPayload, ParsedDocument, RawProgramme, TextField

logger = logging.getLogger(__name__)


def parse_xmltv_document(data: bytes) -> ParsedDocument:
    """
    Parse an XMLTV document into channels and raw programme records

    Programme records are not normalized here; timestamps and text fields
    are resolved later by the chunk processor.

    Args:
        data: Decompressed XMLTV document bytes

    Returns:
        ParsedDocument with channels and raw programmes in document order

    Raises:
        EPGParseError: If the XML is malformed or has no <tv> root
    """
    logger.debug(f"Parsing XMLTV document ({len(data) / 1024 / 1024:.2f} MB)")

    parser = etree.XMLParser(huge_tree=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as e:
        logger.error(f"  XML parsing error: {e}")
        raise EPGParseError(f"Malformed XML: {e}") from e

    if root is None or root.tag != "tv":
        tag = getattr(root, "tag", None)
        raise EPGParseError(f"Invalid EPG XML structure (root element: {tag})")

    channels = _parse_channels(root)
    programmes = _parse_programmes(root)

    logger.info(f"XMLTV parsing complete: {len(channels)} channels, {len(programmes)} programmes")

    return ParsedDocument(channels=channels, programmes=programmes)


def _parse_channels(root: etree._Element) -> list[ChannelPayload]:
    """Extract channels from XMLTV root element"""
    channels = []

    for channel in root.iterfind('channel'):
        channel_id = channel.get('id')
        if not channel_id:
            logger.debug("Skipping channel with missing ID attribute")
            continue

        # Get display name (first one or fallback to ID)
        display_name = _get_text(channel, 'display-name', default=channel_id)

        icon_url = None
        icon_elem = channel.find('icon')
        if icon_elem is not None:
            icon_url = icon_elem.get('src') or None

        channels.append(ChannelPayload(
            id=channel_id,
            name=display_name or channel_id,
            icon=icon_url
        ))

    return channels


def _parse_programmes(root: etree._Element) -> list[RawProgramme]:
    """Extract raw programme records from XMLTV root element"""
    return [
        RawProgramme(
            channel=programme.get('channel'),
            start=programme.get('start'),
            stop=programme.get('stop'),
            title=_text_field(programme, 'title'),
            description=_text_field(programme, 'desc'),
            category=_text_field(programme, 'category'),
        )
        for programme in root.iterfind('programme')
    ]


def _text_field(element: etree._Element, tag: str) -> Optional[TextField]:
    """Snapshot the first child with the given tag"""
    child = element.find(tag)
    if child is None:
        return None
    return TextField(
        text=child.text,
        attributes={str(key): str(value) for key, value in child.attrib.items()},
        content="".join(child.itertext()),
    )


def _get_text(element: etree._Element, tag: str, default: Optional[str] = None) -> Optional[str]:
    """Safely extract text from XML element"""
    child = element.find(tag)
    if child is None or not child.text:
        return default
    return child.text.strip()
