from django.contrib import admin
from django.urls import path

from diagnostics import api

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/devices/<uuid:device_id>/problems", api.device_problems, name="diag-device-problems"),
    path("api/devices/<str:device_id>/default-remote", api.device_default_remote, name="diag-device-default-remote"),
    path("api/problems/<uuid:problem_id>", api.problem_detail, name="diag-problem-detail"),
    path("api/problems/<uuid:problem_id>/restore", api.problem_restore, name="diag-problem-restore"),
    path("api/problems/<uuid:problem_id>/publish", api.problem_publish, name="diag-problem-publish"),
    path("api/problems/<uuid:problem_id>/unpublish", api.problem_unpublish, name="diag-problem-unpublish"),
    path("api/problems/<uuid:problem_id>/steps", api.problem_steps, name="diag-problem-steps"),
    path("api/steps/insert", api.steps_insert, name="diag-steps-insert"),
    path("api/steps/reorder", api.steps_reorder, name="diag-steps-reorder"),
    path("api/steps/fix-numbering", api.steps_fix_numbering, name="diag-steps-fix-numbering"),
    path("api/steps/validate", api.steps_validate, name="diag-steps-validate"),
    path("api/steps/<uuid:step_id>", api.step_detail, name="diag-step-detail"),
    path("api/steps/<uuid:step_id>/restore", api.step_restore, name="diag-step-restore"),
    path("api/steps/<uuid:step_id>/duplicate", api.step_duplicate, name="diag-step-duplicate"),
    path("api/steps/<uuid:step_id>/next", api.step_next, name="diag-step-next"),
    path("api/steps/<uuid:step_id>/previous", api.step_previous, name="diag-step-previous"),
    path("api/sessions", api.sessions_collection, name="diag-sessions"),
    path("api/sessions/<uuid:session_id>", api.session_detail, name="diag-session-detail"),
    path("api/sessions/<uuid:session_id>/progress", api.session_progress, name="diag-session-progress"),
    path("api/sessions/<uuid:session_id>/complete", api.session_complete, name="diag-session-complete"),
    path("api/sessions/<uuid:session_id>/restore", api.session_restore, name="diag-session-restore"),
    path("api/remotes", api.remotes_collection, name="diag-remotes"),
    path("api/remotes/<uuid:remote_id>", api.remote_detail, name="diag-remote-detail"),
    path("api/remotes/<uuid:remote_id>/set-default", api.remote_set_default, name="diag-remote-set-default"),
    path("api/remotes/<uuid:remote_id>/duplicate", api.remote_duplicate, name="diag-remote-duplicate"),
    path("api/remotes/<uuid:remote_id>/use", api.remote_use, name="diag-remote-use"),
]
