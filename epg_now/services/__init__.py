"""
Services package for EPG Now

This package contains all business logic and service layer components.
"""
from epg_now.services.epg_manager import EPGManager
from epg_now.services.chunk_processor import process_chunk
from epg_now.services.worker_pool import NormalizationPool
from epg_now.services.xmltv_parser_service import parse_xmltv_document

__all__ = [
    'EPGManager',
    'process_chunk',
    'NormalizationPool',
    'parse_xmltv_document',
]
