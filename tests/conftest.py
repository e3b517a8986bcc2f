"""
Pytest configuration and shared fixtures for the scanner tests.
"""
import json

import pytest

from uftt_scanner import MarkerMatcher, ScanSession, ScannerConfig, TranslationStore


@pytest.fixture
def make_config(tmp_path):
    """Factory for configurations rooted in the test folder"""
    def factory(**overrides):
        return ScannerConfig(base_dir=tmp_path, **overrides)
    return factory


@pytest.fixture
def config(make_config):
    """Configuration with two languages"""
    return make_config(languages=("en", "fr"))


@pytest.fixture
def store():
    return TranslationStore()


@pytest.fixture
def session():
    return ScanSession()


@pytest.fixture
def matcher():
    return MarkerMatcher(("UFTT", "UFTTSpan", "UFTTDiv", "UFTTHtml"))


@pytest.fixture
def project(tmp_path):
    """Project folder with a configuration file, one source file and an existing translation file"""
    (tmp_path / "ufttconfig.json").write_text(
        json.dumps({"languages": ["en", "fr"]}), encoding="utf-8"
    )
    components = tmp_path / "src" / "components"
    components.mkdir(parents=True)
    (components / "App.tsx").write_text(
        "export const App = () => (\n"
        "  <div>\n"
        '    <UFTT ttid="greet">Hello</UFTT>\n'
        "    <UFTTSpan className=\"button\">\n"
        "      Cancel\n"
        "    </UFTTSpan>\n"
        "  </div>\n"
        ");\n",
        encoding="utf-8",
    )
    translations = tmp_path / "src" / "translations"
    translations.mkdir()
    (translations / "translation.json").write_text(
        json.dumps({"stale": {"_": "Stale", "en": "Old"}}), encoding="utf-8"
    )
    return tmp_path
