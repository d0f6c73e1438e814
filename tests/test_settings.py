import os
import tempfile
import unittest
from pathlib import Path

from atexport.settings import (CONFIG_ENVIRONMENT_VARIABLE, SETTING_CONCURRENCY, SETTING_PDS, DownloadOptions,
                               ExportOptions, ExportSettings)

SETTINGS_TOML = '''
[service]
pds = "https://pds.example"

[download]
concurrency = 5
max_retries = 2
base_delay = 0.5

[export]
part_size = 250
prettify_json = false
'''


class ExportSettingsTest(unittest.TestCase):
    def setUp(self):
        """Save and clear ATEXPORT_CONFIG environment variable."""
        self.original_config = os.environ.pop(CONFIG_ENVIRONMENT_VARIABLE, None)

    def tearDown(self):
        """Restore original ATEXPORT_CONFIG environment variable."""
        if self.original_config is not None:
            os.environ[CONFIG_ENVIRONMENT_VARIABLE] = self.original_config
        else:
            os.environ.pop(CONFIG_ENVIRONMENT_VARIABLE, None)

    def write_settings(self, tmpdir) -> Path:
        path = Path(tmpdir) / 'atexport.toml'
        path.write_text(SETTINGS_TOML)
        return path

    def test_load_from_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = ExportSettings.load(self.write_settings(tmpdir))
            self.assertEqual('https://pds.example', settings.get(SETTING_PDS))
            self.assertEqual(5, settings.get(SETTING_CONCURRENCY))
            self.assertEqual({'part_size': 250, 'prettify_json': False}, settings.get('export'))

    def test_load_from_environment(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            os.environ[CONFIG_ENVIRONMENT_VARIABLE] = str(self.write_settings(tmpdir))
            settings = ExportSettings.load()
            self.assertEqual(self.write_settings(tmpdir), settings.settings_file)
            self.assertEqual(2, settings.get('download.max_retries'))

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = ExportSettings.load(Path(tmpdir) / 'absent.toml')
            self.assertIsNone(settings.get(SETTING_PDS))
            self.assertEqual(3, settings.get(SETTING_CONCURRENCY, 3))

    def test_no_file(self):
        settings = ExportSettings.load()
        self.assertIsNone(settings.settings_file)
        self.assertEqual('fallback', settings.get('nonexistent.key', 'fallback'))

    def test_intermediate_value_is_not_a_table(self):
        settings = ExportSettings(values={'download': 7})
        self.assertEqual('x', settings.get('download.concurrency', 'x'))


class OptionsTest(unittest.TestCase):
    def test_defaults(self):
        options = DownloadOptions.from_settings(ExportSettings())
        self.assertEqual(DownloadOptions(), options)
        self.assertEqual((3, 3, 1.0), (options.concurrency, options.max_retries, options.base_delay))
        self.assertTrue(options.user_agent.startswith('atexport/'))
        self.assertEqual(ExportOptions(), ExportOptions.from_settings(ExportSettings()))
        self.assertEqual(1000, ExportOptions().part_size)

    def test_from_settings(self):
        settings = ExportSettings(values={
            'download': {'concurrency': 5, 'max_retries': 0, 'timeout': 2, 'max_delay': 8},
            'export': {'part_size': 250, 'prettify_json': False, 'organize_by_collection': False},
        })
        download = DownloadOptions.from_settings(settings)
        self.assertEqual((5, 0, 2.0, 8.0), (download.concurrency, download.max_retries, download.timeout,
                                             download.max_delay))
        export = ExportOptions.from_settings(settings)
        self.assertEqual(ExportOptions(250, False, False), export)

    def test_validation(self):
        with self.assertRaises(ValueError):
            DownloadOptions.from_settings(ExportSettings(values={'download': {'concurrency': 0}}))
        with self.assertRaises(ValueError):
            ExportOptions(part_size=0)


if __name__ == '__main__':
    unittest.main()
