import json

from django.test import TestCase

from diagnostics.models import DiagnosticStep, Device, Problem, Remote


class WorkflowApiTests(TestCase):
    def setUp(self):
        self.device = Device.objects.create(name="Living Room TV")
        self.problem = Problem.objects.create(device=self.device, title="No picture")

    def _post(self, url: str, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type="application/json")

    def _create_step(self, title: str):
        response = self._post(
            f"/api/problems/{self.problem.id}/steps",
            {"title": title, "instruction": f"Do {title}"},
        )
        self.assertEqual(response.status_code, 201, response.content.decode())
        return response.json()

    def test_create_and_list_steps(self):
        self._create_step("A")
        self._create_step("B")
        response = self.client.get(f"/api/problems/{self.problem.id}/steps")
        self.assertEqual(response.status_code, 200, response.content.decode())
        payload = response.json()
        self.assertEqual([(s["title"], s["step_number"]) for s in payload["steps"]], [("A", 1), ("B", 2)])

    def test_schema_errors_are_bad_requests(self):
        response = self._post(f"/api/problems/{self.problem.id}/steps", {"title": "A"})
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["kind"], "validation_error")
        self.assertIn("root: 'instruction' is a required property", payload["details"]["errors"])

    def test_insert_reorder_and_validate(self):
        a = self._create_step("A")
        b = self._create_step("B")
        response = self._post(
            "/api/steps/insert",
            {"problem_id": str(self.problem.id), "after_number": 1, "step": {"title": "X", "instruction": "Do X"}},
        )
        self.assertEqual(response.status_code, 201, response.content.decode())
        x = response.json()
        self.assertEqual(x["step_number"], 2)

        response = self._post(
            "/api/steps/reorder",
            {"problem_id": str(self.problem.id), "step_ids": [b["id"], x["id"], a["id"]]},
        )
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertEqual([s["id"] for s in response.json()["steps"]], [b["id"], x["id"], a["id"]])

        response = self.client.get("/api/steps/validate", {"problem_id": str(self.problem.id)})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_valid"])

    def test_delete_step_compacts(self):
        a = self._create_step("A")
        self._create_step("B")
        response = self.client.delete(f"/api/steps/{a['id']}")
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertEqual(DiagnosticStep.objects.get(title="B", is_active=True).step_number, 1)
        response = self.client.delete(f"/api/steps/{a['id']}")
        self.assertEqual(response.status_code, 404)

    def test_unknown_problem_is_not_found(self):
        response = self.client.get("/api/problems/00000000-0000-0000-0000-000000000000/steps")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["kind"], "not_found")

    def test_session_flow(self):
        step = self._create_step("A")
        self._create_step("B")
        response = self._post(
            "/api/sessions",
            {"device_id": str(self.device.id), "problem_id": str(self.problem.id), "session_id": "kiosk-1"},
        )
        self.assertEqual(response.status_code, 201, response.content.decode())
        session = response.json()
        self.assertEqual(session["total_steps"], 2)
        self.assertEqual(session["state"], "open")

        response = self._post(f"/api/sessions/{session['id']}/progress", {"step_id": step["id"], "completed": True})
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertEqual(response.json()["completion_percentage"], 50)

        response = self._post(f"/api/sessions/{session['id']}/complete", {"success": True})
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertEqual(response.json()["state"], "completed")

        response = self._post(f"/api/sessions/{session['id']}/complete", {"success": True})
        self.assertEqual(response.status_code, 409)

        response = self.client.patch(
            f"/api/sessions/{session['id']}",
            data=json.dumps({"success": False, "force": True}),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 400)

        response = self._post(
            "/api/sessions",
            {"device_id": str(self.device.id), "problem_id": str(self.problem.id), "session_id": "kiosk-1"},
        )
        self.assertEqual(response.status_code, 409)

    def test_delete_open_session_needs_force(self):
        response = self._post("/api/sessions", {"device_id": str(self.device.id), "problem_id": str(self.problem.id)})
        session_id = response.json()["id"]
        self.assertEqual(self.client.delete(f"/api/sessions/{session_id}").status_code, 409)
        self.assertEqual(self.client.delete(f"/api/sessions/{session_id}?force=true").status_code, 200)
        self.assertEqual(self.client.get(f"/api/sessions/{session_id}").status_code, 404)

    def test_remote_default_flow(self):
        response = self._post("/api/remotes", {"name": "R1", "device_id": str(self.device.id)})
        self.assertEqual(response.status_code, 201, response.content.decode())
        r1 = response.json()
        self.assertTrue(r1["is_default"])
        r2 = self._post("/api/remotes", {"name": "R2", "device_id": str(self.device.id)}).json()

        response = self._post(f"/api/remotes/{r2['id']}/set-default", {"device_id": str(self.device.id)})
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertFalse(Remote.objects.get(id=r1["id"]).is_default)

        response = self.client.get(f"/api/devices/{self.device.id}/default-remote")
        self.assertEqual(response.json()["id"], r2["id"])

        self.assertEqual(self.client.delete(f"/api/remotes/{r2['id']}").status_code, 409)

    def test_universal_default_remote(self):
        response = self._post("/api/remotes", {"name": "Universal", "device_id": None, "is_default": True})
        self.assertEqual(response.status_code, 201, response.content.decode())
        self.assertIsNone(response.json()["device_id"])
        response = self.client.get("/api/devices/universal/default-remote")
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.assertEqual(response.json()["name"], "Universal")

    def test_malformed_identifier_is_bad_request(self):
        response = self.client.get("/api/devices/not-a-uuid/default-remote")
        self.assertEqual(response.status_code, 400)

    def test_duplicate_problem_title_conflicts(self):
        response = self._post(f"/api/devices/{self.device.id}/problems", {"title": " no PICTURE "})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["field"], "title")

    def test_request_id_header(self):
        response = self.client.get(f"/api/problems/{self.problem.id}/steps", HTTP_X_REQUEST_ID="req-123")
        self.assertEqual(response["X-Request-ID"], "req-123")
