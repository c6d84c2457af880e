"""Tests for the generation adapters."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import OpenAIError

from nabi.errors import GenerationError, GenerationTimeout, UnrecognizedResponseShape
from nabi.services.generation import ImageAdapter, SongAdapter, VideoAdapter
from nabi.services.generation.song import extract_audio_url
from tests.conftest import http_response, mock_async_client

SOURCE_IMAGE = "data:image/jpeg;base64,aW1n"


def status_error(status_code: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        "provider error",
        request=httpx.Request("POST", "https://provider.test"),
        response=httpx.Response(status_code),
    )


class TestExtractAudioUrl:
    """Tests for the song output shapes."""

    def test_object_shape(self):
        assert extract_audio_url({"audio_url": "https://cdn.test/a.mp3"}) == "https://cdn.test/a.mp3"

    def test_list_of_objects_shape(self):
        output = [{"audio_url": "https://cdn.test/1.mp3"}, {"audio_url": "https://cdn.test/2.mp3"}]
        assert extract_audio_url(output) == "https://cdn.test/1.mp3"

    def test_list_of_urls_shape(self):
        assert extract_audio_url(["https://cdn.test/a.mp3"]) == "https://cdn.test/a.mp3"

    @pytest.mark.parametrize("output", [None, [], {}, {"audio_url": ""}, [{"url": "x"}], "x"])
    def test_unknown_shapes(self, output):
        with pytest.raises(UnrecognizedResponseShape) as exc_info:
            extract_audio_url(output)

        assert exc_info.value.provider == "song"


class TestSongAdapter:
    """Tests for submit-then-poll song generation."""

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_completes_on_third_poll(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"task_id": "task-1"})
        mock_client.get.side_effect = [
            http_response({"status": "pending"}),
            http_response({"status": "processing"}),
            http_response({"status": "completed", "output": {"audio_url": "https://cdn.test/song.mp3"}}),
        ]

        adapter = SongAdapter(poll_interval=0, max_attempts=5)
        result = await adapter.generate("A song about the sea")

        assert result.url == "https://cdn.test/song.mp3"
        assert result.media_kind == "audio"
        assert mock_client.get.await_count == 3
        assert mock_client.get.call_args.args[0].endswith("/tasks/task-1")
        assert mock_client.post.call_args.kwargs["json"] == {"prompt": "A song about the sea"}

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_enveloped_task_with_list_output(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"data": {"id": "task-2"}})
        mock_client.get.return_value = http_response({
            "data": {"status": "SUCCESS", "output": [{"audio_url": "https://cdn.test/a.mp3"}]}
        })

        result = await SongAdapter(poll_interval=0, max_attempts=2).generate("x")

        assert result.url == "https://cdn.test/a.mp3"
        assert mock_client.get.call_args.args[0].endswith("/tasks/task-2")

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_poll_budget_exhausted(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"task_id": "task-3"})
        mock_client.get.return_value = http_response({"status": "pending"})

        with pytest.raises(GenerationTimeout) as exc_info:
            await SongAdapter(poll_interval=0, max_attempts=3).generate("x")

        assert not isinstance(exc_info.value, GenerationError)
        assert exc_info.value.attempts == 3
        assert mock_client.get.await_count == 3

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_failed_task(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"task_id": "task-4"})
        mock_client.get.return_value = http_response({"status": "failed", "error": "lyrics rejected"})

        with pytest.raises(GenerationError, match="lyrics rejected"):
            await SongAdapter(poll_interval=0, max_attempts=3).generate("x")

        assert mock_client.get.await_count == 1

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_completed_with_unknown_output(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"task_id": "task-5"})
        mock_client.get.return_value = http_response({"status": "completed", "output": {"mp3": "x"}})

        with pytest.raises(UnrecognizedResponseShape):
            await SongAdapter(poll_interval=0, max_attempts=3).generate("x")

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_submit_rejected(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        response = http_response({"error": "bad key"}, status_code=401)
        response.raise_for_status.side_effect = status_error(401)
        mock_client.post.return_value = response

        with pytest.raises(GenerationError, match="401"):
            await SongAdapter(poll_interval=0, max_attempts=3).generate("x")

        mock_client.get.assert_not_called()

    @pytest.mark.asyncio
    @patch("nabi.services.generation.song.httpx.AsyncClient")
    async def test_provider_unreachable(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(GenerationError, match="unreachable"):
            await SongAdapter(poll_interval=0, max_attempts=3).generate("x")


class TestVideoAdapter:
    """Tests for image-to-video predictions."""

    @pytest.mark.asyncio
    @patch("nabi.services.generation.video.httpx.AsyncClient")
    async def test_prediction_succeeds(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"id": "pred-1", "status": "starting"})
        mock_client.get.side_effect = [
            http_response({"status": "processing"}),
            http_response({"status": "succeeded", "output": ["https://cdn.test/v.mp4"]}),
        ]

        result = await VideoAdapter(poll_interval=0, max_attempts=5).generate(
            "They wave hello", source_image=SOURCE_IMAGE
        )

        assert result.url == "https://cdn.test/v.mp4"
        assert result.media_kind == "video"
        assert mock_client.post.call_args.kwargs["json"] == {
            "input": {"image": SOURCE_IMAGE, "prompt": "They wave hello"}
        }
        assert mock_client.get.call_args.args[0].endswith("/predictions/pred-1")

    @pytest.mark.asyncio
    @patch("nabi.services.generation.video.httpx.AsyncClient")
    async def test_string_output(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"id": "pred-2"})
        mock_client.get.return_value = http_response({"status": "succeeded", "output": "https://cdn.test/v.mp4"})

        result = await VideoAdapter(poll_interval=0, max_attempts=2).generate("x", source_image=SOURCE_IMAGE)

        assert result.url == "https://cdn.test/v.mp4"

    @pytest.mark.asyncio
    @patch("nabi.services.generation.video.httpx.AsyncClient")
    async def test_polling_is_bounded(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"id": "pred-3"})
        mock_client.get.return_value = http_response({"status": "processing"})

        with pytest.raises(GenerationTimeout):
            await VideoAdapter(poll_interval=0, max_attempts=4).generate("x", source_image=SOURCE_IMAGE)

        assert mock_client.get.await_count == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["failed", "canceled"])
    @patch("nabi.services.generation.video.httpx.AsyncClient")
    async def test_terminal_failure(self, mock_client_cls, status):
        mock_client = mock_async_client(mock_client_cls)
        mock_client.post.return_value = http_response({"id": "pred-4"})
        mock_client.get.return_value = http_response({"status": status, "error": "nsfw"})

        with pytest.raises(GenerationError, match=status):
            await VideoAdapter(poll_interval=0, max_attempts=4).generate("x", source_image=SOURCE_IMAGE)

    @pytest.mark.asyncio
    @patch("nabi.services.generation.video.httpx.AsyncClient")
    async def test_missing_source_image(self, mock_client_cls):
        mock_client = mock_async_client(mock_client_cls)

        with pytest.raises(GenerationError):
            await VideoAdapter(poll_interval=0, max_attempts=4).generate("x")

        mock_client.post.assert_not_called()


class TestImageAdapter:
    """Tests for synchronous text-to-image generation."""

    @pytest.mark.asyncio
    async def test_returns_first_url(self):
        client = MagicMock()
        client.images.generate = AsyncMock(return_value=SimpleNamespace(
            data=[SimpleNamespace(url="https://cdn.test/img.png")]
        ))

        result = await ImageAdapter(client=client).generate("A cat on the moon")

        assert result.url == "https://cdn.test/img.png"
        assert result.media_kind == "image"
        kwargs = client.images.generate.call_args.kwargs
        assert kwargs["prompt"] == "A cat on the moon"
        assert kwargs["n"] == 1

    @pytest.mark.asyncio
    async def test_empty_result(self):
        client = MagicMock()
        client.images.generate = AsyncMock(return_value=SimpleNamespace(data=[]))

        with pytest.raises(GenerationError):
            await ImageAdapter(client=client).generate("x")

    @pytest.mark.asyncio
    async def test_provider_error(self):
        client = MagicMock()
        client.images.generate = AsyncMock(side_effect=OpenAIError("content policy"))

        with pytest.raises(GenerationError, match="content policy"):
            await ImageAdapter(client=client).generate("x")
