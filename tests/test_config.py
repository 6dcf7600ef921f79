import unittest


def _settings(**overrides):
    from reconciler.config import Settings

    values = dict(
        source_name="github",
        source_gitlab_url="https://gitlab.source",
        source_gitlab_token="s-token",
        source_project_id="team/app",
        target_name="plane",
        target_gitlab_url="https://gitlab.target",
        target_gitlab_token="t-token",
        target_project_id="mirror/app",
    )
    values.update(overrides)
    return Settings(**values)


class ValidateSyncSettingsTests(unittest.TestCase):
    def test_valid_settings_return_direction(self):
        from reconciler.config import validate_sync_settings
        from reconciler.core.results import SyncDirection

        self.assertEqual(validate_sync_settings(_settings()), SyncDirection.BOTH)
        self.assertEqual(
            validate_sync_settings(_settings(sync_direction="Source-To-Target")),
            SyncDirection.SOURCE_TO_TARGET,
        )

    def test_unknown_direction_is_rejected(self):
        from reconciler.config import validate_sync_settings
        from reconciler.core.errors import ConfigValidationError

        with self.assertRaises(ConfigValidationError) as ctx:
            validate_sync_settings(_settings(sync_direction="sideways"))
        self.assertIn("sideways", str(ctx.exception))

    def test_missing_connection_settings_are_listed(self):
        from reconciler.config import validate_sync_settings
        from reconciler.core.errors import ConfigValidationError

        with self.assertRaises(ConfigValidationError) as ctx:
            validate_sync_settings(_settings(target_gitlab_token=None, source_project_id=""))
        self.assertIn("source_project_id", str(ctx.exception))
        self.assertIn("target_gitlab_token", str(ctx.exception))

    def test_provider_names_must_differ(self):
        from reconciler.config import validate_sync_settings
        from reconciler.core.errors import ConfigValidationError

        with self.assertRaises(ConfigValidationError):
            validate_sync_settings(_settings(target_name="github"))

    def test_bad_state_mapping_is_rejected(self):
        from reconciler.config import validate_sync_settings
        from reconciler.core.errors import ConfigValidationError

        with self.assertRaises(ConfigValidationError):
            validate_sync_settings(_settings(source_state_mapping={"state_mapping": {"x": "later"}}))

    def test_config_error_is_a_value_error(self):
        from reconciler.core.errors import ConfigValidationError

        self.assertTrue(issubclass(ConfigValidationError, ValueError))

    def test_state_mapping_setting_is_parsed(self):
        from reconciler.config import state_mapping_config
        from reconciler.core.normalized import StateCategory
        from reconciler.core.state_mapping import category_of

        config = state_mapping_config({"state_mapping": {"In Review": "ready"}})

        self.assertEqual(category_of("in review", config), StateCategory.READY)
        self.assertIsNone(state_mapping_config(None))


if __name__ == "__main__":
    unittest.main()
