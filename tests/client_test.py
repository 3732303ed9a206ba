import unittest
from unittest.mock import MagicMock

import requests

from jobs.client import USER_AGENT, LocalRenderClient, RenderServiceClient
from renderer.errors import NetworkFailure, ParseFailure
from renderer.models import Diagnostics


def make_response(status_code=200, chunks=(), text=""):
    response = MagicMock()
    response.status_code = status_code
    response.encoding = None
    response.text = text
    response.iter_content.return_value = iter(chunks)
    return response


class TestRenderServiceClient(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = RenderServiceClient("http://worker:8080/", timeout=900, session=self.session)

    def test_puts_job_and_decodes_last_line(self):
        response = make_response(chunks=['{"time": 1, "event": "start"}\n{"operat', 'ionId": "op-1"}\n'])
        self.session.put.return_value = response

        result = self.client.render("op-1", "http://example.com/a.zip")

        self.assertEqual(result, {"operationId": "op-1"})
        args, kwargs = self.session.put.call_args
        self.assertEqual(args[0], "http://worker:8080/renders/op-1")
        self.assertEqual(kwargs["json"], {"url": "http://example.com/a.zip"})
        self.assertEqual(kwargs["timeout"], 900)
        self.assertEqual(kwargs["headers"]["User-Agent"], USER_AGENT)
        self.assertTrue(kwargs["stream"])
        self.assertEqual(response.encoding, "utf-8")
        response.close.assert_called_once()

    def test_non_2xx_is_network_failure_with_body(self):
        response = make_response(status_code=400, text="URL must be valid")
        self.session.put.return_value = response

        with self.assertRaises(NetworkFailure) as cm:
            self.client.render("op", "nope")
        self.assertEqual(cm.exception.status_code, 400)
        self.assertEqual(cm.exception.response_body, "URL must be valid")
        response.close.assert_called_once()

    def test_timeout_is_network_failure(self):
        self.session.put.side_effect = requests.exceptions.ReadTimeout("read timed out")
        with self.assertRaises(NetworkFailure) as cm:
            self.client.render("op", "http://example.com/a.zip")
        self.assertIn("timed out after 900s", str(cm.exception))

    def test_connection_error_is_network_failure(self):
        self.session.put.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(NetworkFailure):
            self.client.render("op", "http://example.com/a.zip")

    def test_interrupted_stream_is_network_failure(self):
        response = make_response()
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("broken")
        self.session.put.return_value = response

        with self.assertRaises(NetworkFailure):
            self.client.render("op", "http://example.com/a.zip")
        response.close.assert_called_once()

    def test_malformed_body_is_parse_failure(self):
        self.session.put.return_value = make_response(chunks=["<html>oops</html>"])
        with self.assertRaises(ParseFailure):
            self.client.render("op", "http://example.com/a.zip")

    def test_close_closes_session(self):
        self.client.close()
        self.session.close.assert_called_once()


class TestLocalRenderClient(unittest.TestCase):
    def test_runs_pipeline_with_operation_id(self):
        pipeline = MagicMock()

        def render(url, diagnostics=None):
            diagnostics.record("start")
            diagnostics.finish()
            return diagnostics

        pipeline.render.side_effect = render
        result = LocalRenderClient(pipeline).render("op-7", "http://example.com/a.zip")

        self.assertEqual(result["operationId"], "op-7")
        self.assertEqual(result["events"][0]["event"], "start")
        self.assertIsInstance(pipeline.render.call_args[1]["diagnostics"], Diagnostics)


if __name__ == "__main__":
    unittest.main()
