import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from infrastructure.http_robust import RobustAsyncClient, is_retryable_status

def test_retryable_status():
    assert is_retryable_status(MagicMock(status_code=503))
    assert is_retryable_status(MagicMock(status_code=429))
    assert not is_retryable_status(MagicMock(status_code=404))

@pytest.mark.asyncio
async def test_single_attempt_by_default():
    raw = AsyncMock()
    raw.request.side_effect = httpx.ConnectError("refused")
    with pytest.raises(httpx.ConnectError):
        await RobustAsyncClient(raw).get("https://peer.example.com/x")
    assert raw.request.call_count == 1

@pytest.mark.asyncio
async def test_error_status_returned_after_last_attempt():
    raw = AsyncMock()
    raw.request.return_value = MagicMock(status_code=502)
    res = await RobustAsyncClient(raw).post("https://peer.example.com/x", json={})
    assert res.status_code == 502
    raw.request.assert_called_once_with("POST", "https://peer.example.com/x", json={})
