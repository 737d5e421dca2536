import unittest


_COMPONENTS = {
    "aspect_ratio": {"type": "string", "enum": ["1:1", "16:9"], "description": "Aspect ratio of the output"},
    "output_format": {"type": "string", "enum": ["webp", "png"]},
}

_PROPERTIES = {
    "prompt": {"type": "string", "description": "Text prompt"},
    "negative_prompt": {"type": "string"},
    "image": {"type": "string", "format": "uri", "description": "Input image"},
    "mask_image": {"type": "string"},
    "tail_image_url": {"type": "string"},
    "reference": {"type": "string", "description": "URL of the image to copy the style from"},
    "image_size": {"type": "string", "default": "square_hd"},
    "num_images": {"type": "integer", "default": 1, "minimum": 1, "maximum": 4},
    "guidance_scale": {"type": "number", "default": 3.5},
    "seed": {"type": "integer"},
    "aspect_ratio": {"allOf": [{"$ref": "#/components/schemas/aspect_ratio"}], "default": "1:1"},
    "output_format": {"allOf": [{"$ref": "#/components/schemas/output_format"}]},
    "webhook": {"type": "string"},
    "lora_weights": {"type": "string"},
}


def _doc(**kw):
    from nous.mediagen.types import SchemaDocument

    return SchemaDocument(
        properties=kw.pop("properties", _PROPERTIES),
        required=kw.pop("required", ("prompt", "image")),
        components=kw.pop("components", _COMPONENTS),
        **kw,
    )


class TestClassification(unittest.TestCase):
    def test_labels(self) -> None:
        from nous.mediagen.inspector import to_label

        self.assertEqual(to_label("tail_image_url"), "Tail Image")
        self.assertEqual(to_label("prompt"), "Prompt")
        self.assertEqual(to_label("first_frame"), "First Frame")

    def test_image_input_detection(self) -> None:
        from nous.mediagen.inspector import is_image_input

        self.assertTrue(is_image_input("image", {"type": "string", "format": "uri"}))
        self.assertTrue(is_image_input("start_image", {"type": "string"}))
        self.assertTrue(is_image_input("image_urls", {"type": "array", "items": {"type": "string"}}))
        self.assertTrue(is_image_input("style_ref", {"type": "string", "description": "Base64 image to match"}))
        self.assertFalse(is_image_input("image_size", {"type": "string", "format": "uri"}))
        self.assertFalse(is_image_input("num_images", {"type": "integer"}))
        self.assertFalse(is_image_input("guidance_image_scale", {"type": "string"}))
        self.assertFalse(is_image_input("images", {"type": "array", "items": {"type": "integer"}}))

    def test_convert_resolves_all_of_refs(self) -> None:
        from nous.mediagen.inspector import convert_schema_property

        param = convert_schema_property("aspect_ratio", _PROPERTIES["aspect_ratio"], ("prompt",), _COMPONENTS)
        self.assertIsNotNone(param)
        assert param is not None
        self.assertEqual(param.type, "string")
        self.assertEqual(param.enum, ["1:1", "16:9"])
        self.assertEqual(param.default, "1:1")
        self.assertEqual(param.description, "Aspect ratio of the output")
        self.assertFalse(param.required)

    def test_convert_drops_excluded_and_keeps_bounds(self) -> None:
        from nous.mediagen.inspector import convert_schema_property

        self.assertIsNone(convert_schema_property("webhook", {"type": "string"}, ()))
        param = convert_schema_property("num_images", _PROPERTIES["num_images"], ("num_images",))
        assert param is not None
        self.assertEqual((param.type, param.minimum, param.maximum, param.default), ("integer", 1, 4, 1))
        self.assertTrue(param.required)


class TestExtractDescription(unittest.TestCase):
    def test_inputs_and_parameters_are_split_and_sorted(self) -> None:
        from nous.mediagen.inspector import extract_description

        desc = extract_description(_doc())

        self.assertEqual(
            [i.name for i in desc.inputs],
            ["image", "prompt", "mask_image", "reference", "tail_image_url", "negative_prompt"],
        )
        image = desc.inputs[0]
        self.assertEqual((image.kind, image.required, image.is_array, image.label), ("image", True, False, "Image"))
        self.assertEqual(desc.inputs[1].kind, "text")

        self.assertEqual(
            [p.name for p in desc.parameters],
            ["guidance_scale", "image_size", "num_images", "seed", "aspect_ratio", "lora_weights"],
        )

    def test_description_from_local_table_is_used_as_is(self) -> None:
        from nous.mediagen.inspector import ModelInspector
        from nous.mediagen.reference import description_to_document
        from nous.mediagen.reference.kie import get_model_description

        desc = get_model_description("seedream/4.5-edit")

        class _Source:
            provider_name = "kie"

            def fetch_schema_document(self, model_id: str):  # noqa: ARG002
                return description_to_document(desc)

        self.assertIs(ModelInspector().describe(_Source(), "seedream/4.5-edit"), desc)


class TestModelInspectorCache(unittest.TestCase):
    def test_descriptions_are_cached_per_model(self) -> None:
        from nous.mediagen.inspector import ModelInspector
        from nous.mediagen.schema import SchemaCache

        now = [0.0]

        class _Source:
            provider_name = "fal"

            def __init__(self) -> None:
                self.calls = 0

            def fetch_schema_document(self, model_id: str):  # noqa: ARG002
                self.calls += 1
                return _doc()

        source = _Source()
        inspector = ModelInspector(SchemaCache(600, clock=lambda: now[0]))
        first = inspector.describe(source, "fal-ai/flux/dev")
        now[0] = 599
        self.assertIs(inspector.describe(source, "fal-ai/flux/dev"), first)
        self.assertEqual(source.calls, 1)
        now[0] = 600
        inspector.describe(source, "fal-ai/flux/dev")
        self.assertEqual(source.calls, 2)

    def test_errors_propagate_and_are_not_cached(self) -> None:
        from nous.mediagen import MediaGenError
        from nous.mediagen._internal.errors import schema_unavailable_error
        from nous.mediagen.inspector import ModelInspector

        class _Source:
            provider_name = "replicate"

            def fetch_schema_document(self, model_id: str):
                raise schema_unavailable_error(f"no schema for {model_id}")

        inspector = ModelInspector()
        with self.assertRaises(MediaGenError):
            inspector.describe(_Source(), "owner/name")
        self.assertEqual(len(inspector.cache), 0)
