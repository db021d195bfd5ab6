import tempfile
import unittest
from pathlib import Path

from citeresolve.runtime_config import DEFAULT_DISCOVERY_LIMITS, load_runtime_config


def _load(text: str):
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "runtime.toml"
        path.write_text(text, encoding="utf-8")
        return load_runtime_config(path)


class RuntimeConfigTests(unittest.TestCase):
    def test_missing_file_uses_defaults(self) -> None:
        cfg = load_runtime_config(Path("/nonexistent/runtime.toml"))
        self.assertEqual(cfg.verification.early_exit_score, 0.9)
        self.assertEqual(cfg.discovery.max_papers, 20)
        self.assertEqual(cfg.discovery.limits, DEFAULT_DISCOVERY_LIMITS)

    def test_malformed_file_uses_defaults(self) -> None:
        cfg = _load("[verification\nearly_exit_score = ")
        self.assertEqual(cfg.verification.max_suggestions, 5)

    def test_reads_values(self) -> None:
        cfg = _load(
            "[verification]\nearly_exit_score = 0.95\nmax_suggestions = 3\n"
            "[discovery]\nmin_quality = 0.4\n"
            "[discovery.limits]\nopenalex = 25\n"
            '[sources]\ndisabled = ["arxiv"]\nuser_agent = "tests/1.0"\n'
        )
        self.assertEqual(cfg.verification.early_exit_score, 0.95)
        self.assertEqual(cfg.verification.max_suggestions, 3)
        self.assertEqual(cfg.discovery.min_quality, 0.4)
        self.assertEqual(cfg.discovery.limit_for("openalex"), 25)
        self.assertEqual(cfg.discovery.limit_for("crossref"), DEFAULT_DISCOVERY_LIMITS["crossref"])
        self.assertEqual(cfg.sources.disabled, ("arxiv",))
        self.assertEqual(cfg.sources.user_agent, "tests/1.0")

    def test_invalid_values_fall_back(self) -> None:
        cfg = _load(
            "[verification]\nearly_exit_score = 1.5\nmax_suggestions = -2\n"
            '[discovery]\nmax_papers = "many"\n'
            '[sources]\ndisabled = "arxiv"\n'
        )
        self.assertEqual(cfg.verification.early_exit_score, 0.9)
        self.assertEqual(cfg.verification.max_suggestions, 5)
        self.assertEqual(cfg.discovery.max_papers, 20)
        self.assertEqual(cfg.sources.disabled, ())

    def test_unknown_source_limit_defaults_to_ten(self) -> None:
        cfg = _load("")
        self.assertEqual(cfg.discovery.limit_for("somewhere_new"), 10)


if __name__ == "__main__":
    unittest.main()
