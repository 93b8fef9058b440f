from django.contrib.auth import get_user_model
from django.test import TestCase

from diagnostics.models import DiagnosticStep, Device, Problem, Remote


class AdminActionTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_superuser(
            username="diag-admin",
            password="pass",
            email="diag-admin@example.com",
        )
        self.client.force_login(self.admin)
        self.device = Device.objects.create(name="Projector")

    def test_make_default_action_moves_the_flag(self):
        r1 = Remote.objects.create(device=self.device, name="R1", is_default=True)
        r2 = Remote.objects.create(device=self.device, name="R2")
        response = self.client.post(
            "/admin/diagnostics/remote/",
            {"action": "make_default", "_selected_action": [str(r2.id)]},
        )
        self.assertEqual(response.status_code, 302)
        r1.refresh_from_db()
        r2.refresh_from_db()
        self.assertFalse(r1.is_default)
        self.assertTrue(r2.is_default)

    def test_fix_step_numbering_action(self):
        problem = Problem.objects.create(device=self.device, title="Lamp flickers")
        for number, title in ((3, "A"), (7, "B")):
            DiagnosticStep.objects.create(problem=problem, device=self.device, step_number=number, title=title, instruction="x")
        response = self.client.post(
            "/admin/diagnostics/problem/",
            {"action": "fix_step_numbering", "_selected_action": [str(problem.id)]},
        )
        self.assertEqual(response.status_code, 302)
        numbers = list(
            DiagnosticStep.objects.filter(problem=problem, is_active=True).order_by("step_number").values_list(
                "step_number", flat=True
            )
        )
        self.assertEqual(numbers, [1, 2])
