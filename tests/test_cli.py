"""
CLI tests.
"""

import contextlib
import io
import json
import os
import tempfile
import unittest

from veritaslog.cli import main

META = {"title": "X", "severity": "HIGH", "moduleName": "Ops", "notes": "", "createdAt": 1700000000}
TEXT_COMMITMENT = "43c95a96a9ae8182dbe6277fadc58ebf1499d1255f7e8af059a4b6b9a886f368"


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.log_path = self._write("incident.log", "incident details\r\n")
        self.meta_path = self._write("meta.json", json.dumps(META))

    def tearDown(self):
        self.tmp.cleanup()

    def _write(self, name, content):
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        return path

    def _run(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_canonicalize(self):
        path = self._write("data.json", '{"b": 1, "a": 2}\r\n')
        code, out, err = self._run("canonicalize", "--file", path)
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), '{"a":2,"b":1}')
        self.assertIn("json", err)

    def test_commitment(self):
        code, out, _ = self._run("commitment", "-f", self.log_path, "-m", self.meta_path)
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), TEXT_COMMITMENT)

    def test_verify_match(self):
        code, out, _ = self._run("verify", "-f", self.log_path, "-m", self.meta_path, "-c", TEXT_COMMITMENT)
        self.assertEqual(code, 0)
        self.assertIn("43c95a96a9ae8182", out)

    def test_verify_mismatch(self):
        tampered = self._write("tampered.log", "incident details!")
        code, out, _ = self._run("verify", "-f", tampered, "-m", self.meta_path, "-c", TEXT_COMMITMENT)
        self.assertEqual(code, 1)
        self.assertIn("Expected: 43c95a96a9ae8182...", out)

    def test_invalid_meta(self):
        bad_meta = self._write("bad.json", json.dumps({**META, "severity": "NOPE"}))
        code, _, err = self._run("commitment", "-f", self.log_path, "-m", bad_meta)
        self.assertEqual(code, 2)
        self.assertIn("INVALID_INPUT", err)


if __name__ == "__main__":
    unittest.main()
