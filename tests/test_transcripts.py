import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai
from fastapi.testclient import TestClient

from app import app

client = TestClient(app)


def api_error(cls, status, body):
    request = httpx.Request("GET", "https://api.openai.com/v1/vector_stores/vs_test/files")
    response = httpx.Response(status, request=request, text=body)
    return cls(f"Error code: {status}", response=response, body=None)


def vector_store_file(file_id, status="completed", created_at=1700000000):
    return SimpleNamespace(id=file_id, status=status, created_at=created_at)


class TranscriptTestCase(unittest.TestCase):
    def setUp(self):
        self.patcher_config = patch.multiple("app", AUTH_REQUIRED=False, VECTOR_STORE_ID="vs_test")
        self.patcher_config.start()

        self.patcher_openai = patch("app.openai_client")
        self.mock_openai = self.patcher_openai.start()
        self.openai = self.mock_openai.return_value

    def tearDown(self):
        self.patcher_openai.stop()
        self.patcher_config.stop()


class TestListTranscripts(TranscriptTestCase):
    def test_list_enriches_each_file(self):
        self.openai.vector_stores.files.list.return_value = SimpleNamespace(
            data=[vector_store_file("file-1"), vector_store_file("file-2", status="in_progress")],
            has_more=True,
        )

        def retrieve(file_id):
            if file_id == "file-2":
                raise api_error(openai.NotFoundError, 404, "no such file")
            return SimpleNamespace(id=file_id, filename="episode-12.txt", bytes=2048)

        self.openai.files.retrieve.side_effect = retrieve

        response = client.get("/api/list-transcripts")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "files": [
                    {"id": "file-1", "filename": "episode-12.txt", "bytes": 2048, "status": "completed", "created_at": 1700000000},
                    {"id": "file-2", "filename": "Unknown", "bytes": 0, "status": "in_progress", "created_at": 1700000000},
                ],
                "has_more": True,
                "last_id": "file-2",
            },
        )
        self.openai.vector_stores.files.list.assert_called_once_with(vector_store_id="vs_test", limit=100)

    def test_cursor_and_limit_are_forwarded(self):
        self.openai.vector_stores.files.list.return_value = SimpleNamespace(data=[], has_more=False)

        response = client.get("/api/list-transcripts", params={"limit": 20, "after": "file-0"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"files": [], "has_more": False, "last_id": None})
        self.openai.vector_stores.files.list.assert_called_once_with(
            vector_store_id="vs_test", limit=20, after="file-0"
        )

    def test_limit_out_of_range(self):
        response = client.get("/api/list-transcripts", params={"limit": 0})
        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["error"])
        self.openai.vector_stores.files.list.assert_not_called()

    def test_upstream_error_is_surfaced(self):
        self.openai.vector_stores.files.list.side_effect = api_error(
            openai.PermissionDeniedError, 403, '{"error": "project mismatch"}'
        )

        response = client.get("/api/list-transcripts")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {"error": 'Failed to list files: {"error": "project mismatch"}'})

    def test_transport_failure(self):
        request = httpx.Request("GET", "https://api.openai.com/v1/vector_stores/vs_test/files")
        self.openai.vector_stores.files.list.side_effect = openai.APIConnectionError(request=request)

        response = client.get("/api/list-transcripts")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to list transcripts"})

    def test_vector_store_not_configured(self):
        with patch("app.VECTOR_STORE_ID", None):
            response = client.get("/api/list-transcripts")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Vector store ID not configured"})


class TestDeleteTranscript(TranscriptTestCase):
    def test_delete(self):
        response = client.delete("/api/list-transcripts", params={"fileId": "file-1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "message": "File deleted successfully"})
        self.openai.vector_stores.files.delete.assert_called_once_with(file_id="file-1", vector_store_id="vs_test")

    def test_file_id_required(self):
        response = client.delete("/api/list-transcripts")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "File ID is required"})

    def test_unknown_file_surfaces_upstream_error(self):
        body = '{"error": {"message": "No file found with id \'file-x\' in vector store \'vs_test\'."}}'
        self.openai.vector_stores.files.delete.side_effect = api_error(openai.NotFoundError, 404, body)

        response = client.delete("/api/list-transcripts", params={"fileId": "file-x"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": f"Failed to delete file: {body}"})


class TestUploadTranscript(TranscriptTestCase):
    def test_upload(self):
        self.openai.files.create.return_value = SimpleNamespace(id="file-9")
        vs_file = MagicMock()
        vs_file.model_dump.return_value = {"id": "file-9", "status": "in_progress", "vector_store_id": "vs_test"}
        self.openai.vector_stores.files.create.return_value = vs_file

        files = {"file": ("episode-7.txt", b"HOST: welcome back", "text/plain")}
        response = client.post("/api/upload-transcript", files=files)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "success": True,
                "fileId": "file-9",
                "fileName": "episode-7.txt",
                "vectorStoreFile": {"id": "file-9", "status": "in_progress", "vector_store_id": "vs_test"},
                "message": "Transcript uploaded successfully",
            },
        )
        create_kwargs = self.openai.files.create.call_args.kwargs
        self.assertEqual(create_kwargs["purpose"], "assistants")
        self.assertEqual(create_kwargs["file"][0], "episode-7.txt")
        self.assertEqual(create_kwargs["file"][1], b"HOST: welcome back")
        self.openai.vector_stores.files.create.assert_called_once_with(vector_store_id="vs_test", file_id="file-9")

    def test_rejects_non_text_before_upstream(self):
        files = {"file": ("deck.pdf", b"%PDF-1.7", "application/pdf")}
        response = client.post("/api/upload-transcript", files=files)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Only text files are allowed"})
        self.mock_openai.assert_not_called()

    def test_no_file(self):
        response = client.post("/api/upload-transcript", files={"other": ("a.txt", b"x", "text/plain")})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "No file provided"})

    def test_upload_step_failure(self):
        self.openai.files.create.side_effect = api_error(openai.BadRequestError, 400, "file is empty")

        files = {"file": ("empty.txt", b"", "text/plain")}
        response = client.post("/api/upload-transcript", files=files)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Failed to upload file: file is empty"})
        self.openai.vector_stores.files.create.assert_not_called()

    def test_vector_store_step_failure(self):
        self.openai.files.create.return_value = SimpleNamespace(id="file-9")
        self.openai.vector_stores.files.create.side_effect = api_error(
            openai.NotFoundError, 404, "vector store not found"
        )

        files = {"file": ("episode-7.txt", b"text", "text/plain")}
        response = client.post("/api/upload-transcript", files=files)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Failed to add file to vector store: vector store not found"})


class TestTranscriptConfiguration(unittest.TestCase):
    def test_missing_api_key(self):
        with patch.multiple("app", AUTH_REQUIRED=False, OPENAI_API_KEY=None, VECTOR_STORE_ID="vs_test"):
            files = {"file": ("episode-7.txt", b"text", "text/plain")}
            response = client.post("/api/upload-transcript", files=files)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "OpenAI API key not configured"})


if __name__ == "__main__":
    unittest.main()
