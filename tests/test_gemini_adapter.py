import unittest
from unittest.mock import patch


def _request(model_id: str = "nano-banana", **kw):
    from nous.mediagen.types import GenerationRequest, TargetModel

    return GenerationRequest(model=TargetModel(provider="gemini", model_id=model_id), **kw)


def _image_response(data: str = "iVBORw0K", mime: str = "image/png") -> dict:
    return {
        "candidates": [
            {"content": {"parts": [{"text": "Here you go"}, {"inlineData": {"mimeType": mime, "data": data}}]}}
        ]
    }


class TestGeminiBody(unittest.TestCase):
    def test_prompt_and_inline_image_parts(self) -> None:
        from nous.mediagen.providers import GeminiAdapter

        body = GeminiAdapter(api_key="g").build_body(
            _request(prompt="a cat", reference_images=("data:image/jpeg;base64,/9j/4AAQ",), aspect_ratio="16:9")
        )
        parts = body["contents"][0]["parts"]
        self.assertEqual(parts[0], {"text": "a cat"})
        self.assertEqual(parts[1], {"inlineData": {"mimeType": "image/jpeg", "data": "/9j/4AAQ"}})
        self.assertEqual(
            body["generationConfig"],
            {"responseModalities": ["IMAGE", "TEXT"], "imageConfig": {"aspectRatio": "16:9"}},
        )
        self.assertNotIn("tools", body)

    def test_remote_reference_image_is_fetched_and_inlined(self) -> None:
        from nous.mediagen._internal.http import FetchedMedia
        from nous.mediagen.providers import GeminiAdapter

        with patch(
            "nous.mediagen.providers.gemini.fetch_media",
            return_value=FetchedMedia(content_type="image/webp", data=b"RIFF"),
        ) as fetch:
            body = GeminiAdapter(api_key="g").build_body(
                _request(prompt="p", reference_images=("https://cdn.example.com/in.webp",))
            )
        self.assertEqual(fetch.call_args.kwargs["max_bytes"], 20 * 1024 * 1024)
        self.assertEqual(body["contents"][0]["parts"][1], {"inlineData": {"mimeType": "image/webp", "data": "UklGRg=="}})

    def test_private_reference_image_is_rejected(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import GeminiAdapter

        with patch("nous.mediagen.providers.gemini.fetch_media", side_effect=AssertionError("unexpected download")):
            with self.assertRaises(MediaGenError) as cm:
                GeminiAdapter(api_key="g").build_body(_request(prompt="p", reference_images=("http://10.0.0.5/a.png",)))
        self.assertEqual(cm.exception.info.type, "SSRFError")

    def test_pro_model_gets_image_size_and_search_tool(self) -> None:
        from nous.mediagen.providers import GeminiAdapter

        body = GeminiAdapter(api_key="g").build_body(
            _request("nano-banana-pro", prompt="today's weather in Paris", resolution="2K", use_google_search=True)
        )
        self.assertEqual(body["generationConfig"]["imageConfig"], {"imageSize": "2K"})
        self.assertEqual(body["tools"], [{"googleSearch": {}}])

    def test_search_and_size_are_ignored_for_flash_model(self) -> None:
        from nous.mediagen.providers import GeminiAdapter

        body = GeminiAdapter(api_key="g").build_body(
            _request(prompt="p", parameters={"resolution": "4K", "use_google_search": "true"})
        )
        self.assertNotIn("tools", body)
        self.assertNotIn("imageConfig", body["generationConfig"])

    def test_dynamic_prompt_and_images_take_precedence(self) -> None:
        from nous.mediagen.providers import GeminiAdapter

        body = GeminiAdapter(api_key="g").build_body(
            _request(
                prompt="ignored",
                reference_images=("data:image/png;base64,AAAA",),
                dynamic_inputs={"prompt": "used", "images": "data:image/png;base64,BBBB"},
            )
        )
        parts = body["contents"][0]["parts"]
        self.assertEqual(parts[0], {"text": "used"})
        self.assertEqual(len(parts), 2)
        self.assertEqual(parts[1]["inlineData"]["data"], "BBBB")


class TestGeminiGenerate(unittest.TestCase):
    def test_generate_returns_inline_image_without_source_url(self) -> None:
        from nous.mediagen.providers import GeminiAdapter
        from nous.mediagen.schema import SchemaAcquirer

        with patch("nous.mediagen.providers.gemini.request_json", return_value=_image_response()) as rj:
            out = GeminiAdapter(api_key="g").generate(_request(prompt="a cat"), schemas=SchemaAcquirer())

        self.assertEqual(out.kind, "image")
        self.assertEqual(out.data_uri, "data:image/png;base64,iVBORw0K")
        self.assertEqual(out.source_url, "")
        self.assertEqual(out.mime_type, "image/png")
        self.assertEqual(
            rj.call_args.kwargs["url"],
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image:generateContent",
        )
        self.assertEqual(rj.call_args.kwargs["headers"], {"x-goog-api-key": "g"})

    def test_text_only_answer_is_no_output(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import GeminiAdapter
        from nous.mediagen.schema import SchemaAcquirer

        resp = {"candidates": [{"content": {"parts": [{"text": "I can't draw that."}]}}]}
        with patch("nous.mediagen.providers.gemini.request_json", return_value=resp):
            with self.assertRaises(MediaGenError) as cm:
                GeminiAdapter(api_key="g").generate(_request(prompt="x"), schemas=SchemaAcquirer())
        self.assertEqual(cm.exception.info.type, "NoOutputError")
        self.assertEqual(cm.exception.info.message, "Model returned text instead of image: I can't draw that.")

    def test_empty_candidates(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen.providers import GeminiAdapter
        from nous.mediagen.schema import SchemaAcquirer

        with patch("nous.mediagen.providers.gemini.request_json", return_value={"candidates": []}):
            with self.assertRaises(MediaGenError) as cm:
                GeminiAdapter(api_key="g").generate(_request(prompt="x"), schemas=SchemaAcquirer())
        self.assertEqual(cm.exception.info.message, "No response from AI model")

        with patch("nous.mediagen.providers.gemini.request_json", return_value={"candidates": [{"finishReason": "SAFETY"}]}):
            with self.assertRaises(MediaGenError) as cm:
                GeminiAdapter(api_key="g").generate(_request(prompt="x"), schemas=SchemaAcquirer())
        self.assertEqual(cm.exception.info.message, "No content in response")

    def test_static_description_for_pro_model(self) -> None:
        from nous.mediagen.providers import GeminiAdapter

        doc = GeminiAdapter(api_key=None).fetch_schema_document("nano-banana-pro")
        self.assertIsNotNone(doc.description)
        names = [p.name for p in doc.description.parameters]  # type: ignore[union-attr]
        self.assertEqual(names, ["aspect_ratio", "resolution", "use_google_search"])
