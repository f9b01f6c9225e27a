from unittest.mock import Mock

import pytest

from tracklens.api.services.aggregator import TrackingAggregator
from tracklens.api.services.storage import MemoryStore
from tracklens.model.models import IPRecord


@pytest.fixture
def example_record():
    """解決済みの一般的な IP レコード"""
    return IPRecord(
        ip="93.184.216.34",
        country="United States",
        isp="Edgecast",
        org="Example Org",
    )


@pytest.fixture
def mock_resolver(example_record):
    """常に example_record を返すリゾルバのモック"""
    resolver = Mock()
    resolver.resolve = Mock(return_value=example_record)
    return resolver


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def aggregator(mock_resolver, memory_store):
    return TrackingAggregator(resolver=mock_resolver, storage=memory_store)


@pytest.fixture
def page_visit_event():
    """content.js が送る PAGE_VISIT メッセージ"""
    return {
        "type": "PAGE_VISIT",
        "url": "http://a.com",
        "domain": "a.com",
        "timestamp": 1700000000000,
    }


@pytest.fixture
def mixed_events():
    """全種類のイベント (到着順)"""
    base = {"url": "https://shop.example/login", "domain": "shop.example"}
    return [
        {"type": "MEDIA_ACCESS_STARTED", "mediaType": ["camera", "microphone"],
         "timestamp": 1, **base},
        {"type": "AUTOFILL_DETECTED", "fieldType": "email", "fieldName": "user",
         "timestamp": 2, **base},
        {"type": "SENSITIVE_FIELD_DETECTED", "fieldType": "password", "count": 1,
         "timestamp": 3, **base},
        {"type": "MEDIA_ACCESS_ENDED", "mediaType": "video", "duration": 5000,
         "timestamp": 4, **base},
        {"type": "AUTOFILL_SUBMITTED", "autofilledFieldCount": 2,
         "fields": [{"type": "email", "name": "user"},
                    {"type": "password", "name": "pw"}],
         "timestamp": 5, **base},
        {"type": "MEDIA_ACCESS_DENIED", "error": "Permission denied",
         "timestamp": 6, **base},
        {"type": "SENSITIVE_FIELD_DETECTED", "fieldType": "payment", "count": 3,
         "timestamp": 7, **base},
    ]
