"""Tests for backend response parsing, error mapping and the three transcribers."""

import asyncio
import base64
import io
import json
import wave
from types import SimpleNamespace

import httpx
import numpy as np
import pytest

from lingosub.asr import (
    CloudflareTranscriber,
    LocalServerTranscriber,
    LocalWhisperTranscriber,
    create_transcriber,
)
from lingosub.asr.base import CloudResult, InProcessResult, LocalServerResult, RawSegment, to_raw_segments
from lingosub.asr.cloudflare import parse_cloudflare_response
from lingosub.asr.parsing import parse_segments, robust_parse_json, segments_from_items
from lingosub.config import Settings
from lingosub.exceptions import ConfigError, FatalTranscriptionError, TransientTranscriptionError

SR = 16000
AUDIO = (0.1 * np.sin(2 * np.pi * 440 * np.arange(SR * 2) / SR)).astype(np.float32)


class TestRobustParseJson:
    def test_plain_array(self):
        assert robust_parse_json('[{"start": 0, "end": 1, "text": "a"}]') == [{"start": 0, "end": 1, "text": "a"}]

    def test_markdown_fence(self):
        payload = '```json\n[{"start": 0, "end": 1, "text": "a"}]\n```'
        assert len(robust_parse_json(payload)) == 1

    def test_single_object_wrapped(self):
        assert robust_parse_json('{"start": 0, "end": 1, "text": "a"}') == [{"start": 0, "end": 1, "text": "a"}]

    def test_truncated_array(self):
        payload = '[{"start": 0, "end": 1, "text": "a"}, {"start": 1, "end": 2, "text": "b"}, {"start": 2, "en'
        assert [item["text"] for item in robust_parse_json(payload)] == ["a", "b"]

    def test_objects_inside_prose(self):
        payload = 'Sure! {"start": 0, "end": 1, "text": "hi"} and then {"start": 1, "end": 2, "text": "there"}.'
        assert [item["text"] for item in robust_parse_json(payload)] == ["hi", "there"]

    def test_objects_without_start_skipped(self):
        payload = 'x {"foo": 1} {"start": 3, "text": "kept"} y'
        assert robust_parse_json(payload) == [{"start": 3, "text": "kept"}]

    @pytest.mark.parametrize("payload", ["", "   ", "no json here", "```\n```"])
    def test_nothing_usable(self, payload):
        assert robust_parse_json(payload) == []


class TestSegmentsFromItems:
    def test_coerces_and_filters(self):
        items = [
            {"start": "1.5", "end": "2.5", "text": " one "},
            {"start": 3, "text": "no end"},
            {"start": 4, "end": 5, "text": "   "},
            {"start": None, "end": 5, "text": "no start"},
            {"start": True, "end": 5, "text": "bool start"},
            {"start": float("nan"), "end": 5, "text": "nan"},
            "not a dict",
        ]
        assert segments_from_items(items) == [
            RawSegment(1.5, 2.5, "one"),
            RawSegment(3.0, 3.0, "no end"),
        ]

    def test_not_a_list(self):
        assert segments_from_items({"start": 0}) == []
        assert segments_from_items(None) == []

    def test_parse_segments(self):
        assert parse_segments('```json\n[{"start": 0, "end": 100, "text": "x"}]```') == [RawSegment(0.0, 100.0, "x")]


class TestToRawSegments:
    def test_segments_win_over_text(self):
        result = LocalServerResult(text="whole", segments=[RawSegment(0, 1, "part")])
        assert to_raw_segments(result, 10.0) == [RawSegment(0, 1, "part")]

    def test_text_only_spans_chunk(self):
        assert to_raw_segments(CloudResult(text=" hello "), 7.5) == [RawSegment(0.0, 7.5, "hello", in_seconds=True)]

    def test_empty_segments_dropped(self):
        result = InProcessResult(segments=[RawSegment(0, 1, " "), RawSegment(1, 2, "ok")])
        assert to_raw_segments(result, 5.0) == [RawSegment(1, 2, "ok")]

    def test_nothing(self):
        assert to_raw_segments(LocalServerResult(), 5.0) == []

    def test_result_kind_tags(self):
        assert CloudResult().kind == "cloud"
        assert LocalServerResult().kind == "local_server"
        assert InProcessResult().kind == "in_process"


class TestCloudflareTranscriber:
    def make(self, handler):
        return CloudflareTranscriber("acct", "token", model="@cf/openai/whisper", transport=httpx.MockTransport(handler))

    def test_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "result": {
                    "text": "hello world",
                    "segments": [{"start": 0.0, "end": 1.0, "text": "hello"}, {"start": 1.0, "end": 1.8, "text": "world"}],
                    "transcription_info": {"language": "en"},
                },
            })

        segments = asyncio.run(self.make(handler).transcribe(AUDIO, SR))
        assert [s.text for s in segments] == ["hello", "world"]
        assert "/accounts/acct/ai/run/" in seen["url"]
        assert seen["url"].endswith("openai/whisper")
        assert seen["auth"] == "Bearer token"
        wav_bytes = base64.b64decode(seen["body"]["audio"])
        with wave.open(io.BytesIO(wav_bytes), "rb") as wav:
            assert wav.getframerate() == SR
            assert wav.getnframes() == len(AUDIO)

    def test_text_only(self):
        handler = lambda request: httpx.Response(200, json={"success": True, "result": {"text": "just text"}})
        segments = asyncio.run(self.make(handler).transcribe(AUDIO, SR))
        assert segments == [RawSegment(0.0, 2.0, "just text", in_seconds=True)]

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, status):
        handler = lambda request: httpx.Response(status, text="busy")
        with pytest.raises(TransientTranscriptionError, match=str(status)):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    @pytest.mark.parametrize("status", [400, 401, 413])
    def test_fatal_status(self, status):
        handler = lambda request: httpx.Response(status, text="bad")
        with pytest.raises(FatalTranscriptionError):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_malformed_body_is_transient(self):
        handler = lambda request: httpx.Response(200, text="<html>oops</html>")
        with pytest.raises(TransientTranscriptionError):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_api_failure_flag(self):
        handler = lambda request: httpx.Response(200, json={"success": False, "errors": [{"message": "x"}]})
        with pytest.raises(TransientTranscriptionError, match="failure"):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientTranscriptionError, match="ConnectError"):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_missing_credentials(self):
        with pytest.raises(ConfigError):
            CloudflareTranscriber("", "")

    def test_parse_string_result(self):
        result = parse_cloudflare_response({"result": '[{"start": 0, "end": 2, "text": "s"}]'})
        assert result.segments == [RawSegment(0.0, 2.0, "s")]
        assert result.text == ""


class TestLocalServerTranscriber:
    def make(self, handler, **kwargs):
        return LocalServerTranscriber(endpoint="http://asr.local/v1/audio/transcriptions", transport=httpx.MockTransport(handler), **kwargs)

    def test_verbose_json(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={
                "text": "a b",
                "language": "en",
                "duration": 2.0,
                "segments": [{"start": 0, "end": 100, "text": "a"}, {"start": 100, "end": 180, "text": "b"}],
            })

        segments = asyncio.run(self.make(handler, model="whisper-large", language="en").transcribe(AUDIO, SR))
        assert segments == [RawSegment(0.0, 100.0, "a"), RawSegment(100.0, 180.0, "b")]
        assert seen["content_type"].startswith("multipart/form-data")
        assert b'name="response_format"' in seen["body"]
        assert b"verbose_json" in seen["body"]
        assert b'name="language"' in seen["body"]
        assert b'filename="chunk.wav"' in seen["body"]

    def test_language_omitted_when_empty(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            return httpx.Response(200, json={"text": "hi"})

        asyncio.run(self.make(handler).transcribe(AUDIO, SR))
        assert b'name="language"' not in seen["body"]

    def test_text_only_response(self):
        handler = lambda request: httpx.Response(200, json={"text": "only text"})
        assert asyncio.run(self.make(handler).transcribe(AUDIO, SR)) == [RawSegment(0.0, 2.0, "only text", in_seconds=True)]

    def test_plain_text_response(self):
        handler = lambda request: httpx.Response(200, text="plain words")
        assert asyncio.run(self.make(handler).transcribe(AUDIO, SR)) == [RawSegment(0.0, 2.0, "plain words", in_seconds=True)]

    def test_fenced_json_response(self):
        handler = lambda request: httpx.Response(200, text='```json\n[{"start": 0, "end": 1, "text": "x"}]\n```')
        assert asyncio.run(self.make(handler).transcribe(AUDIO, SR)) == [RawSegment(0.0, 1.0, "x")]

    def test_server_error_is_transient(self):
        handler = lambda request: httpx.Response(502)
        with pytest.raises(TransientTranscriptionError):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_not_found_is_fatal(self):
        handler = lambda request: httpx.Response(404, text="no such model")
        with pytest.raises(FatalTranscriptionError, match="404"):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientTranscriptionError):
            asyncio.run(self.make(handler).transcribe(AUDIO, SR))


class FakeWhisperModel:
    def __init__(self, segments=None, error=None):
        self.segments = segments or []
        self.error = error
        self.kwargs = None

    def transcribe(self, audio, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error

        def gen():
            for start, end, text in self.segments:
                yield SimpleNamespace(start=start, end=end, text=text)

        return gen(), SimpleNamespace(language="en")


class TestLocalWhisperTranscriber:
    def test_segments(self):
        model = FakeWhisperModel([(0.0, 1.2, " hi "), (1.2, 1.9, "")])
        transcriber = LocalWhisperTranscriber(model, beam_size=3)
        segments = asyncio.run(transcriber.transcribe(AUDIO, SR))
        assert segments == [RawSegment(0.0, 1.2, "hi")]
        assert model.kwargs["beam_size"] == 3
        assert transcriber.overlap_tolerance == 0.5

    def test_inference_error_is_fatal(self):
        transcriber = LocalWhisperTranscriber(FakeWhisperModel(error=RuntimeError("CUDA out of memory")))
        with pytest.raises(FatalTranscriptionError, match="out of memory"):
            asyncio.run(transcriber.transcribe(AUDIO, SR))

    def test_wrong_sample_rate(self):
        with pytest.raises(FatalTranscriptionError, match="8000"):
            asyncio.run(LocalWhisperTranscriber(FakeWhisperModel()).transcribe(AUDIO, 8000))

    def test_requires_model(self):
        with pytest.raises(ConfigError):
            LocalWhisperTranscriber(None)


class TestCreateTranscriber:
    def test_local_server_default(self):
        transcriber = create_transcriber(Settings(ASR_BACKEND="local_server", LOCAL_ASR_MODEL="m"))
        assert isinstance(transcriber, LocalServerTranscriber)
        assert transcriber.model == "m"
        assert transcriber.overlap_tolerance == 1.0

    def test_cloudflare(self):
        settings = Settings(ASR_BACKEND="cloudflare", CLOUDFLARE_ACCOUNT_ID="a", CLOUDFLARE_API_TOKEN="t")
        assert isinstance(create_transcriber(settings), CloudflareTranscriber)

    def test_cloudflare_without_credentials(self):
        settings = Settings(ASR_BACKEND="cloudflare", CLOUDFLARE_ACCOUNT_ID="", CLOUDFLARE_API_TOKEN="")
        with pytest.raises(ConfigError):
            create_transcriber(settings)

    def test_in_process_uses_shared_model(self):
        model = FakeWhisperModel()
        settings = Settings(ASR_BACKEND="in_process", IN_PROCESS_OVERLAP_TOLERANCE=0.25)
        transcriber = create_transcriber(settings, model=model)
        assert isinstance(transcriber, LocalWhisperTranscriber)
        assert transcriber.overlap_tolerance == 0.25
