"""
Tests for the blob stores, using httpx.MockTransport in place of Pinata and the gateways.
"""

import httpx
import pytest

from blobstore import BlobStoreError, InMemoryBlobStore, PinataBlobStore, validate_cid

CID = "bafy" + "a" * 55


def make_store(handler, **kwargs) -> PinataBlobStore:
    options = dict(
        api_url="https://api.pinata.test",
        gateway_url="https://gateway.pinata.test",
        jwt="test-jwt",
        public_gateways=["https://ipfs.test"],
        max_retries=3,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )
    options.update(kwargs)
    return PinataBlobStore(**options)


class TestInMemoryBlobStore:
    async def test_put_get(self):
        store = InMemoryBlobStore()
        content_id = await store.put(b"ciphertext")
        assert content_id.startswith("sha256:")
        assert await store.get(content_id) == b"ciphertext"

    async def test_missing_blob(self):
        with pytest.raises(BlobStoreError) as exc:
            await InMemoryBlobStore().get("sha256:00")
        assert exc.value.code == "NOT_FOUND"


class TestValidateCid:
    @pytest.mark.parametrize("value", [CID, f"/ipfs/{CID}", f"  {CID}\n", f"ipfs/{CID}/"])
    def test_normalizes(self, value):
        assert validate_cid(value) == CID

    @pytest.mark.parametrize("value", ["", None, "short", CID + "!", "x" * 200])
    def test_rejects(self, value):
        with pytest.raises(BlobStoreError) as exc:
            validate_cid(value)
        assert exc.value.code == "INVALID_CID"


class TestPin:
    async def test_pin_posts_multipart_with_metadata(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"IpfsHash": CID, "PinSize": 42, "Timestamp": "2024-05-01T10:00:00Z"})

        store = make_store(handler)
        result = await store.pin(b"encrypted-bytes", "record.enc", metadata={"owner": "patient-p"})
        await store.close()

        assert result.cid == CID
        assert result.size == 42
        assert result.gateway_urls == [
            f"https://gateway.pinata.test/ipfs/{CID}",
            f"https://ipfs.test/ipfs/{CID}",
        ]

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/pinning/pinFileToIPFS"
        assert request.headers["Authorization"] == "Bearer test-jwt"
        assert b"encrypted-bytes" in request.content
        assert b'"cidVersion": 1' in request.content
        assert b"patient-p" in request.content

    async def test_put_returns_cid(self):
        store = make_store(lambda request: httpx.Response(200, json={"IpfsHash": CID}))
        assert await store.put(b"blob") == CID

    async def test_bearer_prefix_is_not_doubled(self):
        store = make_store(lambda request: httpx.Response(200), jwt="Bearer abc")
        assert store._get_headers() == {"Authorization": "Bearer abc"}

    async def test_api_key_pair(self):
        store = make_store(lambda request: httpx.Response(200), jwt=None, api_key="k", secret_api_key="s")
        assert store._get_headers() == {"pinata_api_key": "k", "pinata_secret_api_key": "s"}

    async def test_missing_credentials_fail_without_request(self):
        calls = []
        store = make_store(lambda request: calls.append(request) or httpx.Response(200), jwt=None)
        with pytest.raises(BlobStoreError) as exc:
            await store.put(b"blob")
        assert exc.value.code == "AUTH_ERROR"
        assert calls == []

    async def test_retries_transient_failures(self):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"IpfsHash": CID})])
        calls = []

        def handler(request):
            calls.append(request)
            return next(responses)

        store = make_store(handler)
        assert await store.put(b"blob") == CID
        assert len(calls) == 3

    async def test_gives_up_after_max_retries(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = make_store(handler, max_retries=2)
        with pytest.raises(BlobStoreError) as exc:
            await store.put(b"blob")
        assert exc.value.code == "NETWORK_ERROR"

    async def test_missing_hash_in_response(self):
        store = make_store(lambda request: httpx.Response(200, json={}))
        with pytest.raises(BlobStoreError) as exc:
            await store.put(b"blob")
        assert exc.value.code == "INVALID_RESPONSE"


class TestGet:
    async def test_falls_back_to_public_gateway(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host == "gateway.pinata.test":
                return httpx.Response(500)
            return httpx.Response(200, content=b"ciphertext")

        store = make_store(handler)
        assert await store.get(f"/ipfs/{CID}") == b"ciphertext"
        assert hosts == ["gateway.pinata.test", "gateway.pinata.test", "ipfs.test"]

    async def test_dedicated_gateway_gets_credentials(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"ciphertext")

        store = make_store(handler)
        await store.get(CID)
        assert seen[0].headers["Authorization"] == "Bearer test-jwt"

    async def test_empty_response_is_skipped(self):
        def handler(request):
            if request.url.host == "gateway.pinata.test":
                return httpx.Response(200, content=b"")
            return httpx.Response(200, content=b"ciphertext")

        store = make_store(handler)
        assert await store.get(CID) == b"ciphertext"

    async def test_all_gateways_failed(self):
        store = make_store(lambda request: httpx.Response(404))
        with pytest.raises(BlobStoreError) as exc:
            await store.get(CID)
        assert exc.value.code == "ALL_GATEWAYS_FAILED"
        assert exc.value.details["cid"] == CID

    async def test_invalid_cid_is_not_fetched(self):
        calls = []
        store = make_store(lambda request: calls.append(request) or httpx.Response(200))
        with pytest.raises(BlobStoreError) as exc:
            await store.get("not a cid")
        assert exc.value.code == "INVALID_CID"
        assert calls == []


async def test_connection_check():
    def handler(request):
        assert request.url.path == "/data/testAuthentication"
        return httpx.Response(200, json={"message": "Congratulations!"})

    store = make_store(handler)
    assert await store.test_connection()
    await store.close()


def test_from_config():
    from config import Config

    cfg = Config()
    cfg.PINATA_JWT = "jwt-from-env"
    cfg.PUBLIC_GATEWAYS = ["https://ipfs.test"]
    store = PinataBlobStore.from_config(cfg)

    assert store.jwt == "jwt-from-env"
    assert [gateway.name for gateway in store.gateways] == ["pinata", "ipfs.test"]
    assert store.max_retries == max(1, cfg.MAX_RETRIES)
