import unittest
from unittest.mock import patch

_PNG_DATA_URI = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAE="


class _FakeKie:
    def __init__(self, *, created: dict | None = None, polls: list[dict] | None = None) -> None:
        self.created = created or {"code": 200, "msg": "success", "data": {"taskId": "t1"}}
        self.polls = list(polls or [])
        self.calls: list[tuple[str, str, object]] = []
        self.uploads = 0

    def __call__(self, *, method, url, headers=None, json_body=None, timeout_ms=None, proxy_url=None):  # type: ignore[no-untyped-def]
        self.calls.append((method, url, json_body))
        if url == "https://kieai.redpandaai.co/api/file-base64-upload":
            self.uploads += 1
            return {"code": 200, "success": True, "data": {"downloadUrl": f"https://files.kie.ai/u{self.uploads}.png"}}
        if method == "POST":
            return self.created
        if method == "GET":
            return self.polls.pop(0)
        raise AssertionError(f"unexpected call: {method} {url}")

    def body_for(self, suffix: str) -> dict:
        for method, url, body in self.calls:
            if method == "POST" and url.endswith(suffix):
                return body  # type: ignore[return-value]
        raise AssertionError(f"no POST to {suffix}")


def _request(model_id: str, **kw):
    from nous.mediagen.types import GenerationRequest, TargetModel

    caps = kw.pop("capabilities", ())
    return GenerationRequest(model=TargetModel(provider="kie", model_id=model_id, capabilities=caps), **kw)


class TestKieBuildInput(unittest.TestCase):
    def _build(self, request, fake: _FakeKie | None = None) -> dict:
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake or _FakeKie()):
            return KieAdapter(api_key="k").build_input(request, schemas=SchemaAcquirer()).to_wire()

    def test_model_defaults_fill_missing_parameters(self) -> None:
        wire = self._build(_request("seedream/4.5-text-to-image", prompt="a cat", parameters={"quality": "high"}))
        self.assertEqual(wire, {"aspect_ratio": "1:1", "quality": "high", "prompt": "a cat"})

    def test_reference_images_use_model_image_key(self) -> None:
        wire = self._build(
            _request("seedream/4.5-edit", prompt="blue", reference_images=("https://cdn.example.com/a.png",))
        )
        self.assertEqual(wire["image_urls"], ["https://cdn.example.com/a.png"])

    def test_scalar_image_key_takes_first_image(self) -> None:
        wire = self._build(
            _request(
                "kling/v2-5-turbo-image-to-video-pro",
                prompt="pan",
                reference_images=("https://cdn.example.com/a.png", "https://cdn.example.com/b.png"),
            )
        )
        self.assertEqual(wire["image_url"], "https://cdn.example.com/a.png")

    def test_inline_dynamic_images_are_uploaded_and_shaped(self) -> None:
        fake = _FakeKie()
        wire = self._build(
            _request(
                "kling/v2-5-turbo-image-to-video-pro",
                prompt="pan",
                dynamic_inputs={
                    "image_url": _PNG_DATA_URI,
                    "tail_image_url": ["https://cdn.example.com/tail.png"],
                    "extra_refs": _PNG_DATA_URI,
                },
            ),
            fake,
        )
        self.assertEqual(fake.uploads, 2)
        self.assertTrue(wire["image_url"].startswith("https://files.kie.ai/"))
        self.assertEqual(wire["tail_image_url"], "https://cdn.example.com/tail.png")
        self.assertIsInstance(wire["extra_refs"], list)
        self.assertEqual(wire["prompt"], "pan")

    def test_reference_images_fill_image_key_missing_from_dynamic_inputs(self) -> None:
        wire = self._build(
            _request(
                "seedream/4.5-edit",
                reference_images=("https://cdn.example.com/a.png",),
                dynamic_inputs={"prompt": "blue"},
            )
        )
        self.assertEqual(wire["prompt"], "blue")
        self.assertEqual(wire["image_urls"], ["https://cdn.example.com/a.png"])

    def test_gpt_image_drops_size(self) -> None:
        wire = self._build(_request("gpt-image/1.5-text-to-image", prompt="p", parameters={"size": "1024x1024"}))
        self.assertNotIn("size", wire)
        self.assertEqual(wire["quality"], "medium")

    def test_elevenlabs_sends_prompt_as_text(self) -> None:
        wire = self._build(_request("elevenlabs/turbo-v2.5", prompt="hello there"))
        self.assertEqual(wire, {"output_format": "mp3_44100_128", "text": "hello there"})


class TestKieUpload(unittest.TestCase):
    def test_upload_sniffs_mime_and_returns_download_url(self) -> None:
        from nous.mediagen.providers import KieAdapter

        fake = _FakeKie()
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            url = KieAdapter(api_key="k").upload(_PNG_DATA_URI.replace("image/png", "image/jpeg"))

        self.assertEqual(url, "https://files.kie.ai/u1.png")
        body = fake.calls[0][2]
        self.assertTrue(body["base64Data"].startswith("data:image/png;base64,"))  # type: ignore[index]
        self.assertEqual(body["uploadPath"], "images")  # type: ignore[index]
        self.assertTrue(body["fileName"].endswith(".png"))  # type: ignore[index]

    def test_upload_failure_code(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter

        with patch(
            "nous.mediagen.providers.kie.request_json",
            return_value={"code": 500, "success": False, "msg": "disk full"},
        ):
            with self.assertRaises(MediaGenError) as cm:
                KieAdapter(api_key="k").upload(_PNG_DATA_URI)
        self.assertEqual(cm.exception.info.message, "Upload failed: disk full")

    def test_upload_rejects_unsafe_download_url(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter

        for url in ("https://10.0.0.1/x.png", "http://files.kie.ai/x.png"):
            with self.subTest(url=url):
                with patch(
                    "nous.mediagen.providers.kie.request_json",
                    return_value={"code": 200, "success": True, "data": {"downloadUrl": url}},
                ):
                    with self.assertRaises(MediaGenError) as cm:
                        KieAdapter(api_key="k").upload(_PNG_DATA_URI)
                self.assertEqual(cm.exception.info.type, "SSRFError")

    def test_missing_key_is_an_auth_error(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter

        with self.assertRaises(MediaGenError) as cm:
            KieAdapter(api_key=None).upload(_PNG_DATA_URI)
        self.assertEqual(cm.exception.info.type, "AuthError")


class TestKieTaskFlow(unittest.TestCase):
    def test_create_task_and_poll_until_success(self) -> None:
        from nous.mediagen._internal.http import FetchedMedia
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        fake = _FakeKie(
            polls=[
                {"code": 200, "data": {"state": "waiting"}},
                {"code": 200, "data": {"state": "generating"}},
                {
                    "code": 200,
                    "data": {"state": "success", "resultJson": '{"resultUrls":["https://files.kie.ai/out.mp4"]}'},
                },
            ]
        )
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            with patch("nous.mediagen.polling.time.sleep") as sleep:
                with patch(
                    "nous.mediagen.output.fetch_media",
                    return_value=FetchedMedia(content_type="video/mp4", data=b"mp4"),
                ):
                    out = KieAdapter(api_key="k").generate(
                        _request("wan/2-6-text-to-video", prompt="waves", capabilities=("text-to-video",)),
                        schemas=SchemaAcquirer(),
                    )

        self.assertEqual(out.kind, "video")
        self.assertEqual(out.source_url, "https://files.kie.ai/out.mp4")
        self.assertEqual(sleep.call_count, 3)
        sleep.assert_called_with(2.0)
        body = fake.body_for("/jobs/createTask")
        self.assertEqual(body["model"], "wan/2-6-text-to-video")
        self.assertEqual(body["input"]["prompt"], "waves")
        self.assertEqual(body["input"]["duration"], "5")
        gets = [url for method, url, _ in fake.calls if method == "GET"]
        self.assertEqual(gets[0], "https://api.kie.ai/api/v1/jobs/recordInfo?taskId=t1")

    def test_body_error_code_is_a_validation_error(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        fake = _FakeKie(created={"code": 422, "msg": "aspect_ratio is invalid"})
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            with self.assertRaises(MediaGenError) as cm:
                KieAdapter(api_key="k").generate(_request("z-image", prompt="p"), schemas=SchemaAcquirer())

        self.assertEqual(cm.exception.info.type, "ValidationError")
        self.assertEqual(cm.exception.info.message, "aspect_ratio is invalid")
        self.assertEqual(cm.exception.info.provider_code, "422")

    def test_failed_task_uses_fail_message(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        fake = _FakeKie(polls=[{"code": 200, "data": {"state": "fail", "failMsg": "prompt rejected"}}])
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            with patch("nous.mediagen.polling.time.sleep"):
                with self.assertRaises(MediaGenError) as cm:
                    KieAdapter(api_key="k").generate(_request("z-image", prompt="p"), schemas=SchemaAcquirer())

        self.assertEqual(cm.exception.info.type, "ProviderError")
        self.assertEqual(cm.exception.info.message, "prompt rejected")


class TestKieVeoFlow(unittest.TestCase):
    def test_veo_uses_dedicated_endpoint_and_success_flag(self) -> None:
        from nous.mediagen._internal.http import FetchedMedia
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        fake = _FakeKie(
            created={"code": 200, "data": {"taskId": "v1"}},
            polls=[
                {"code": 200, "data": {"successFlag": 0}},
                {"code": 200, "data": {"successFlag": 1, "response": {"resultUrls": ["https://files.kie.ai/v.mp4"]}}},
            ],
        )
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            with patch("nous.mediagen.polling.time.sleep"):
                with patch(
                    "nous.mediagen.output.fetch_media",
                    return_value=FetchedMedia(content_type="application/octet-stream", data=b"mp4"),
                ):
                    out = KieAdapter(api_key="k").generate(
                        _request(
                            "veo3-fast/image-to-video",
                            prompt="zoom",
                            reference_images=("https://cdn.example.com/a.png",),
                        ),
                        schemas=SchemaAcquirer(),
                    )

        self.assertEqual(out.kind, "video")
        self.assertEqual(out.mime_type, "video/mp4")
        body = fake.body_for("/veo/generate")
        self.assertEqual(
            body,
            {
                "prompt": "zoom",
                "model": "veo3_fast",
                "aspect_ratio": "16:9",
                "imageUrls": ["https://cdn.example.com/a.png"],
            },
        )
        gets = [url for method, url, _ in fake.calls if method == "GET"]
        self.assertEqual(gets[0], "https://api.kie.ai/api/v1/veo/record-info?taskId=v1")

    def test_veo_failure_flag(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import KieAdapter
        from nous.mediagen.schema import SchemaAcquirer

        fake = _FakeKie(
            created={"code": 200, "data": {"taskId": "v1"}},
            polls=[{"code": 200, "data": {"successFlag": 2, "errorMessage": "unsafe prompt"}}],
        )
        with patch("nous.mediagen.providers.kie.request_json", side_effect=fake):
            with patch("nous.mediagen.polling.time.sleep"):
                with self.assertRaises(MediaGenError) as cm:
                    KieAdapter(api_key="k").generate(_request("veo3/text-to-video", prompt="x"), schemas=SchemaAcquirer())
        self.assertEqual(cm.exception.info.message, "unsafe prompt")
