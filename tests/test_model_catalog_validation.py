import unittest


class TestModelCatalogValidation(unittest.TestCase):
    def test_catalog_rows_are_well_formed(self) -> None:
        from nous.mediagen.reference import get_model_catalog
        from nous.mediagen.types import PROVIDERS

        catalog = get_model_catalog()
        self.assertEqual(set(catalog), set(PROVIDERS))
        for provider, models in catalog.items():
            for model_id, caps in models.items():
                key = f"{provider}:{model_id}"
                self.assertTrue(model_id.strip(), key)
                self.assertTrue(caps, f"no capabilities for {key}")
                for cap in caps:
                    self.assertRegex(cap, r"^(text|image|video)-to-(image|video|audio|3d)$", key)

    def test_every_kie_model_is_described(self) -> None:
        from nous.mediagen.reference.kie import KIE_MODELS, get_model_defaults

        for model_id, desc in KIE_MODELS.items():
            names = {p.name for p in desc.parameters} | {i.name for i in desc.inputs}
            self.assertTrue(desc.inputs, model_id)
            for key in get_model_defaults(model_id):
                self.assertIn(key, names, f"default {key!r} of {model_id} is not a declared parameter")

    def test_kie_image_keys_are_declared_inputs(self) -> None:
        from nous.mediagen.reference.kie import KIE_MODELS, get_image_input_key

        for model_id, desc in KIE_MODELS.items():
            images = [i.name for i in desc.inputs if i.kind == "image"]
            if not images:
                continue
            self.assertIn(get_image_input_key(model_id), images, model_id)

    def test_catalog_is_a_copy(self) -> None:
        from nous.mediagen.reference import get_capabilities, get_model_catalog

        catalog = get_model_catalog()
        catalog["fal"]["fal-ai/flux/dev"].append("image-to-video")
        self.assertEqual(get_capabilities("fal", "fal-ai/flux/dev"), ("text-to-image",))
