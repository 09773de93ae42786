import unittest
from unittest.mock import patch, MagicMock
import io
import os
import sys
import json
import shutil
import tempfile
import urllib.error

# Add root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ollama_service import (
    OllamaService, OllamaError, extract_json, normalise_card_data, default_card_data,
)


def _http_response(payload):
    """Mock of the context manager urlopen returns, yielding payload as JSON."""
    resp = MagicMock()
    resp.__enter__.return_value.read.return_value = json.dumps(payload).encode('utf-8')
    return resp


MODEL_ANSWER = {
    "playerName": "Wayne Gretzky",
    "sport": "Hockey",
    "year": "1979",
    "manufacturer": "O-Pee-Chee",
    "setName": "O-Pee-Chee",
    "cardNumber": 18,
    "isRookieCard": "true",
    "isAutograph": "false",
    "isMemorabilia": False,
    "condition": {"centering": "7", "corners": 12, "edges": 0, "surface": 6.6, "overall": "near mint"},
    "estimatedValue": "$1,250",
    "confidence": 0.92,
}


class TestExtractJson(unittest.TestCase):

    def test_plain_object(self):
        self.assertEqual(extract_json('{"a": 1}'), {"a": 1})

    def test_object_wrapped_in_prose(self):
        text = 'Here is the card:\n```json\n{"playerName": "X", "condition": {"overall": "Mint"}}\n```\nDone.'
        self.assertEqual(extract_json(text)["condition"]["overall"], "Mint")

    def test_no_object_raises(self):
        with self.assertRaises(ValueError):
            extract_json("I could not read this card.")

    def test_non_object_raises(self):
        with self.assertRaises(ValueError):
            extract_json("[1, 2, 3]")


class TestNormaliseCardData(unittest.TestCase):

    def test_maps_and_coerces_fields(self):
        data = normalise_card_data(MODEL_ANSWER)
        self.assertEqual(data["player_name"], "Wayne Gretzky")
        self.assertEqual(data["set_name"], "O-Pee-Chee")
        self.assertEqual(data["year"], 1979)
        self.assertEqual(data["card_number"], "18")
        self.assertTrue(data["is_rookie_card"])
        self.assertFalse(data["is_autograph"])
        self.assertEqual(data["estimated_value"], 1250.0)
        self.assertAlmostEqual(data["confidence"], 0.92)

    def test_condition_clamped(self):
        condition = normalise_card_data(MODEL_ANSWER)["condition"]
        self.assertEqual(condition, {
            "centering": 7, "corners": 10, "edges": 1, "surface": 7, "overall": "Near Mint",
        })

    def test_unknown_grade_and_missing_fields_fall_back(self):
        data = normalise_card_data({"condition": {"overall": "Pristine"}, "confidence": 4})
        self.assertEqual(data["condition"]["overall"], "Good")
        self.assertEqual(data["player_name"], "Unknown Player")
        self.assertEqual(data["confidence"], 1.0)
        self.assertEqual(data["estimated_value"], 0.0)

    def test_unmapped_keys_dropped(self):
        data = normalise_card_data({"playerName": "A", "grader": "PSA"})
        self.assertNotIn("grader", data)

    def test_non_finite_numbers_fall_back(self):
        # json.loads turns 1e400 into inf
        raw = json.loads('{"year": 1e400, "estimatedValue": -1e400, "confidence": 0.9, '
                         '"condition": {"centering": 1e400, "corners": NaN, "overall": "Mint"}}')
        data = normalise_card_data(raw)
        self.assertEqual(data["year"], default_card_data()["year"])
        self.assertEqual(data["estimated_value"], 0.0)
        self.assertEqual(data["condition"]["centering"], 5)
        self.assertEqual(data["condition"]["corners"], 5)
        self.assertAlmostEqual(data["confidence"], 0.9)

    def test_huge_integer_falls_back(self):
        data = normalise_card_data({"year": 10 ** 400})
        self.assertEqual(data["year"], default_card_data()["year"])


class TestOllamaService(unittest.TestCase):

    def setUp(self):
        self.service = OllamaService(host="http://ollama.test:11434/", model="llava:test", timeout=7)
        self.folder = tempfile.mkdtemp(prefix="lot42_")
        for name in ("b_back.png", "a_front.JPG", "notes.txt"):
            with open(os.path.join(self.folder, name), "wb") as f:
                f.write(b"\x89PNG fake")

    def tearDown(self):
        shutil.rmtree(self.folder, ignore_errors=True)

    def test_host_trailing_slash_stripped(self):
        self.assertEqual(self.service.host, "http://ollama.test:11434")

    @patch('ollama_service.urllib.request.urlopen')
    def test_connection_ok(self, mock_urlopen):
        mock_urlopen.return_value = _http_response({"models": [{"name": "llava:latest"}]})
        self.assertTrue(self.service.test_connection())
        req = mock_urlopen.call_args[0][0]
        self.assertEqual(req.full_url, "http://ollama.test:11434/api/tags")
        self.assertEqual(req.get_method(), "GET")
        self.assertEqual(mock_urlopen.call_args[1]["timeout"], 5)

    @patch('ollama_service.urllib.request.urlopen')
    def test_connection_refused(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("Connection refused")
        self.assertFalse(self.service.test_connection())

    @patch('ollama_service.urllib.request.urlopen')
    def test_analyze_sends_image_and_options(self, mock_urlopen):
        mock_urlopen.return_value = _http_response({"response": json.dumps(MODEL_ANSWER)})
        data = self.service.analyze_card_image(os.path.join(self.folder, "a_front.JPG"))

        self.assertEqual(data["player_name"], "Wayne Gretzky")
        req = mock_urlopen.call_args[0][0]
        self.assertEqual(req.full_url, "http://ollama.test:11434/api/generate")
        body = json.loads(req.data)
        self.assertEqual(body["model"], "llava:test")
        self.assertFalse(body["stream"])
        self.assertEqual(body["options"], {"temperature": 0.1, "top_p": 0.9})
        self.assertEqual(len(body["images"]), 1)
        self.assertEqual(mock_urlopen.call_args[1]["timeout"], 7)

    @patch('ollama_service.urllib.request.urlopen')
    def test_analyze_unparseable_answer_returns_default(self, mock_urlopen):
        mock_urlopen.return_value = _http_response({"response": "This looks like a baseball card."})
        data = self.service.analyze_card_image(os.path.join(self.folder, "a_front.JPG"))
        self.assertEqual(data, default_card_data())
        self.assertEqual(data["confidence"], 0.1)

    @patch('ollama_service.urllib.request.urlopen')
    def test_analyze_http_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "http://ollama.test:11434/api/generate", 404, "Not Found", {}, io.BytesIO(b'model not found'))
        with self.assertRaises(OllamaError) as ctx:
            self.service.analyze_card_image(os.path.join(self.folder, "a_front.JPG"))
        self.assertIn("404", str(ctx.exception))

    def test_list_images_sorted_and_filtered(self):
        self.assertEqual(self.service.list_images(self.folder), ["a_front.JPG", "b_back.png"])

    def test_list_images_missing_folder(self):
        with self.assertRaises(FileNotFoundError):
            self.service.list_images(os.path.join(self.folder, "nope"))

    def test_list_images_empty_folder(self):
        empty = tempfile.mkdtemp()
        try:
            with self.assertRaises(ValueError):
                self.service.list_images(empty)
        finally:
            shutil.rmtree(empty)

    def test_process_folder_collects_successes_and_failures(self):
        progress = []
        answer = normalise_card_data(MODEL_ANSWER)
        with patch.object(self.service, 'analyze_card_image',
                          side_effect=[answer, OllamaError("timed out")]):
            results = self.service.process_card_folder(
                self.folder, progress_callback=lambda done, total: progress.append((done, total)))

        self.assertEqual(progress, [(1, 2), (2, 2)])
        self.assertTrue(results[0]["success"])
        self.assertEqual(results[0]["image_file"], "a_front.JPG")
        card = results[0]["card_data"]
        self.assertEqual(card["front_image"], os.path.join(self.folder, "a_front.JPG"))
        self.assertEqual(card["lot_number"], os.path.basename(self.folder))
        self.assertFalse(results[1]["success"])
        self.assertEqual(results[1]["error"], "timed out")

    def test_process_folder_stops_when_told(self):
        calls = iter([True, False])
        with patch.object(self.service, 'analyze_card_image', return_value=default_card_data()) as mock_analyze:
            results = self.service.process_card_folder(self.folder, should_continue=lambda: next(calls))
        self.assertEqual(len(results), 1)
        self.assertEqual(mock_analyze.call_count, 1)

    def test_process_folder_survives_unexpected_error(self):
        with patch.object(self.service, 'analyze_card_image',
                          side_effect=[OverflowError("cannot convert float infinity to integer"),
                                       default_card_data()]):
            results = self.service.process_card_folder(self.folder)
        self.assertEqual([r["success"] for r in results], [False, True])
        self.assertIn("infinity", results[0]["error"])

    @patch('ollama_service.urllib.request.urlopen')
    def test_process_folder_with_out_of_range_answers(self, mock_urlopen):
        mock_urlopen.side_effect = lambda *a, **kw: _http_response(
            {"response": '{"playerName": "X", "year": 1e400, "confidence": 0.9}'})
        results = self.service.process_card_folder(self.folder)
        self.assertEqual(len(results), 2)
        self.assertTrue(all(r["success"] for r in results))
        self.assertEqual(results[0]["card_data"]["year"], default_card_data()["year"])


if __name__ == '__main__':
    unittest.main()
