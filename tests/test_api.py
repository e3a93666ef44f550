import logging
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from models import Task
from main import app
from services.data_source import DataSourceUnavailableError, SQLAlchemyTaskDataSource
from services.statistics import StatisticsAggregator

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

def headers(user_id):
    return {"X-User-Id": str(user_id)}

class APITestCase(unittest.TestCase):
    def setUp(self):
        Base.metadata.create_all(bind=engine)
        app.dependency_overrides[get_db] = override_get_db
        app.state.statistics_cache.clear()
        app.state.dashboard_counts.clear()
        self.client = TestClient(app)

        self.upload_dir = tempfile.mkdtemp()
        submissions_patch = patch("routers.tasks.SUBMISSIONS_DIR", self.upload_dir)
        submissions_patch.start()
        self.addCleanup(submissions_patch.stop)

    def tearDown(self):
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        shutil.rmtree(self.upload_dir, ignore_errors=True)

    def create_user(self, email, full_name=None):
        response = self.client.post("/users", json={"email": email, "full_name": full_name})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def create_workspace(self, owner_id, name="Backend"):
        response = self.client.post("/workspaces", json={"name": name}, headers=headers(owner_id))
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def assign(self, workspace_id, owner_id, assignee_id, titles):
        response = self.client.post(
            f"/tasks/workspace/{workspace_id}",
            json={"assigned_to": assignee_id, "titles": titles},
            headers=headers(owner_id)
        )
        self.assertEqual(response.status_code, 201, response.text)
        return [task["id"] for task in response.json()]

    def submit(self, task_id, user_id):
        return self.client.post(
            f"/tasks/{task_id}/submit",
            files={"submission_file": ("report.pdf", b"%PDF-1.4 report", "application/pdf")},
            headers=headers(user_id)
        )

    def review(self, task_id, reviewer_id, action, comments=None):
        return self.client.post(
            f"/tasks/{task_id}/review",
            json={"action": action, "comments": comments},
            headers=headers(reviewer_id)
        )

class TestUsersAndAuth(APITestCase):
    def test_register_user(self):
        """Registering twice with the same email is rejected"""
        user_id = self.create_user("olivia@example.com", "Olivia")
        response = self.client.get(f"/users/{user_id}")
        self.assertEqual(response.json()["email"], "olivia@example.com")

        response = self.client.post("/users", json={"email": "olivia@example.com"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Email already registered")

    def test_unknown_user(self):
        self.assertEqual(self.client.get("/users/999").status_code, 404)

    def test_user_header_required(self):
        response = self.client.post("/workspaces", json={"name": "Backend"})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/workspaces", json={"name": "Backend"}, headers=headers(999))
        self.assertEqual(response.status_code, 401)

class TestWorkspacesAPI(APITestCase):
    def setUp(self):
        super().setUp()
        self.owner_id = self.create_user("owner@example.com", "Olivia Owner")
        self.member_id = self.create_user("member@example.com", "Max Member")
        self.workspace_id = self.create_workspace(self.owner_id)

    def test_owner_is_first_member(self):
        workspace = self.client.get(f"/workspaces/{self.workspace_id}").json()
        self.assertEqual(workspace["created_by"], self.owner_id)
        self.assertEqual([(m["user_id"], m["role"]) for m in workspace["members"]], [(self.owner_id, "owner")])

    def test_join_workspace(self):
        response = self.client.post(f"/workspaces/{self.workspace_id}/join", headers=headers(self.member_id))
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["role"], "member")

        response = self.client.post(f"/workspaces/{self.workspace_id}/join", headers=headers(self.member_id))
        self.assertEqual(response.status_code, 400)

        mine = self.client.get("/workspaces/mine", headers=headers(self.member_id)).json()
        self.assertEqual([workspace["id"] for workspace in mine], [self.workspace_id])

    def test_unknown_workspace(self):
        self.assertEqual(self.client.get("/workspaces/999").status_code, 404)
        self.assertEqual(self.client.get("/workspaces/999/tasks").status_code, 404)

    def test_assignment_validation(self):
        response = self.client.post(
            f"/tasks/workspace/{self.workspace_id}",
            json={"assigned_to": self.member_id, "titles": ["", "   "]},
            headers=headers(self.owner_id)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Please enter at least one task")

        response = self.client.post(
            f"/tasks/workspace/{self.workspace_id}",
            json={"assigned_to": 999, "titles": ["Write docs"]},
            headers=headers(self.owner_id)
        )
        self.assertEqual(response.status_code, 404)

        response = self.client.post(
            "/tasks/workspace/999",
            json={"assigned_to": self.member_id, "titles": ["Write docs"]},
            headers=headers(self.owner_id)
        )
        self.assertEqual(response.status_code, 404)

    def test_workspace_task_summary(self):
        self.client.post(f"/workspaces/{self.workspace_id}/join", headers=headers(self.member_id))
        task_ids = self.assign(self.workspace_id, self.owner_id, self.member_id, ["Write docs", " Fix bug ", "Deploy"])
        self.client.post(f"/tasks/{task_ids[0]}/advance", headers=headers(self.member_id))

        summary = self.client.get(f"/workspaces/{self.workspace_id}/tasks").json()
        self.assertEqual(len(summary["tasks"]), 3)
        self.assertEqual(summary["counts"]["total"], 3)
        self.assertEqual(summary["counts"]["active"], 3)

        members = {member["user_id"]: member for member in summary["members"]}
        self.assertEqual(members[self.owner_id]["counts"]["total"], 0)
        self.assertEqual(members[self.member_id]["counts"]["remaining"], 3)
        self.assertEqual(members[self.member_id]["status_counts"]["in_progress"], 1)
        self.assertIn("Fix bug", [task["title"] for task in summary["tasks"]])

    def test_workspace_tasks_store_unavailable(self):
        with patch.object(
            SQLAlchemyTaskDataSource, "fetch_workspace_tasks", side_effect=DataSourceUnavailableError("connection refused")
        ):
            response = self.client.get(f"/workspaces/{self.workspace_id}/tasks")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"], "connection refused")

class TestTaskLifecycleAPI(APITestCase):
    def setUp(self):
        super().setUp()
        self.owner_id = self.create_user("owner@example.com")
        self.member_id = self.create_user("member@example.com")
        self.workspace_id = self.create_workspace(self.owner_id)
        self.task_id = self.assign(self.workspace_id, self.owner_id, self.member_id, ["Write report"])[0]

    def test_advance_to_in_progress(self):
        response = self.client.post(f"/tasks/{self.task_id}/advance", headers=headers(self.member_id))
        self.assertEqual(response.json()["status"], "in_progress")

        response = self.client.post(f"/tasks/{self.task_id}/advance", headers=headers(self.member_id))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Submitting a task requires a file upload")

    def test_status_update(self):
        response = self.client.patch(
            f"/tasks/{self.task_id}/status", json={"status": "in_progress"}, headers=headers(self.member_id)
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.patch(
            f"/tasks/{self.task_id}/status", json={"status": "submitted"}, headers=headers(self.member_id)
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.patch(
            f"/tasks/{self.task_id}/status", json={"status": "done"}, headers=headers(self.member_id)
        )
        self.assertEqual(response.status_code, 422)

        response = self.client.patch(
            f"/tasks/{self.task_id}/status", json={"status": "completed"}, headers=headers(self.member_id)
        )
        self.assertEqual(response.status_code, 400)

    def test_cannot_submit_unstarted_task(self):
        response = self.submit(self.task_id, self.member_id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(os.listdir(self.upload_dir), [])

    def test_submit_stores_file(self):
        self.client.post(f"/tasks/{self.task_id}/advance", headers=headers(self.member_id))
        response = self.submit(self.task_id, self.member_id)
        self.assertEqual(response.status_code, 200, response.text)

        task = response.json()
        self.assertEqual(task["status"], "submitted")
        self.assertIsNotNone(task["submitted_at"])
        self.assertEqual(task["submission_file_name"], "report.pdf")
        self.assertTrue(task["submission_file_ref"].startswith(self.upload_dir))
        self.assertTrue(task["submission_file_ref"].endswith(".pdf"))
        with open(task["submission_file_ref"], "rb") as submitted:
            self.assertEqual(submitted.read(), b"%PDF-1.4 report")

    def test_review_cycle(self):
        """Revise, resubmit, then approve"""
        self.client.post(f"/tasks/{self.task_id}/advance", headers=headers(self.member_id))
        first_submission = self.submit(self.task_id, self.member_id).json()

        response = self.review(self.task_id, self.owner_id, "revise")
        self.assertEqual(response.status_code, 400)

        response = self.review(self.task_id, self.owner_id, "revise", "Please add the appendix")
        self.assertEqual(response.json()["status"], "needs_revision")
        self.assertEqual(response.json()["reviewed_by"], self.owner_id)

        response = self.submit(self.task_id, self.member_id)
        self.assertEqual(response.json()["status"], "submitted")
        self.assertEqual(response.json()["submitted_at"], first_submission["submitted_at"])

        response = self.review(self.task_id, self.owner_id, "approve")
        task = response.json()
        logger.info(f"Approved task: {task}")
        self.assertEqual(task["status"], "completed")
        self.assertIsNotNone(task["completed_at"])
        self.assertEqual(task["review_comments"], "Please add the appendix")

    def test_review_requires_submitted_task(self):
        self.assertEqual(self.review(self.task_id, self.owner_id, "approve").status_code, 400)
        self.assertEqual(self.review(self.task_id, self.owner_id, "reject").status_code, 422)

    def test_unknown_task(self):
        self.assertEqual(self.client.get("/tasks/999").status_code, 404)
        self.assertEqual(self.client.post("/tasks/999/advance", headers=headers(self.member_id)).status_code, 404)

class TestDashboardAPI(APITestCase):
    def setUp(self):
        super().setUp()
        self.owner_id = self.create_user("owner@example.com", "Olivia Owner")
        self.member_id = self.create_user("member@example.com", "Max Member")
        self.workspace_id = self.create_workspace(self.owner_id, "Backend")
        self.client.post(f"/workspaces/{self.workspace_id}/join", headers=headers(self.member_id))

        # One completed task (after a revision), one in progress, one untouched
        done, started, _ = self.assign(
            self.workspace_id, self.owner_id, self.member_id, ["Write report", "Fix bug", "Deploy"]
        )
        self.client.post(f"/tasks/{done}/advance", headers=headers(self.member_id))
        self.submit(done, self.member_id)
        self.review(done, self.owner_id, "revise", "Please add the appendix")
        self.submit(done, self.member_id)
        self.review(done, self.owner_id, "approve")
        self.client.post(f"/tasks/{started}/advance", headers=headers(self.member_id))

    def get_stats(self, user_id):
        response = self.client.get(f"/dashboard/{user_id}/stats")
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def get_counts(self, user_id):
        response = self.client.get("/tasks/assigned/counts", headers=headers(user_id))
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_member_statistics(self):
        stats = self.get_stats(self.member_id)

        all_time = stats["task_metrics"]["all_time"]
        self.assertEqual(
            (all_time["total"], all_time["completed"], all_time["active"], all_time["pending_review"], all_time["remaining"]),
            (3, 1, 2, 0, 2)
        )
        self.assertEqual(all_time["completion_rate"], 33)
        self.assertEqual(all_time["by_status"]["in_progress"], 1)
        self.assertEqual(stats["task_metrics"]["this_week"]["total"], 3)

        trends = stats["task_metrics"]["trends"]
        self.assertEqual(len(trends), 30)
        self.assertEqual(trends[-1]["created"], 3)
        self.assertEqual(trends[-1]["completed"], 1)

        efficiency = stats["efficiency_metrics"]
        self.assertEqual(efficiency["total_completed"], 1)
        self.assertEqual(efficiency["on_time_rate"], 100)
        self.assertEqual(efficiency["revision_rate"], 100)

        workspace_stats = stats["workspace_stats"]
        self.assertEqual(workspace_stats["total_workspaces"], 1)
        self.assertEqual(workspace_stats["owned_workspaces"], 0)
        self.assertEqual(workspace_stats["member_workspaces"], 1)
        self.assertEqual(workspace_stats["most_active_workspace"]["name"], "Backend")
        self.assertEqual(workspace_stats["most_active_workspace"]["task_count"], 3)

        self.assertEqual(stats["achievements"]["current_streak"], 1)
        self.assertEqual(stats["achievements"]["longest_streak"], 1)

    def test_owner_statistics(self):
        stats = self.get_stats(self.owner_id)
        self.assertEqual(stats["task_metrics"]["all_time"]["total"], 0)
        self.assertEqual(stats["workspace_stats"]["owned_workspaces"], 1)
        self.assertEqual(stats["workspace_stats"]["member_workspaces"], 0)
        self.assertIsNone(stats["workspace_stats"]["most_active_workspace"])

    def test_unknown_user(self):
        self.assertEqual(self.client.get("/dashboard/999/stats").status_code, 404)

    def test_recent_activity(self):
        response = self.client.get(f"/dashboard/{self.member_id}/activity")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [item["id"] for item in response.json()],
            ["week_completion", "active_workspace", "in_progress"]
        )

    def test_counts_cross_check(self):
        """Workspace-side counts are compared with what the dashboard last showed"""
        counts = self.get_counts(self.member_id)
        self.assertIsNone(counts["consistency"])
        self.assertEqual(counts["counts"]["remaining"], 2)

        self.get_stats(self.member_id)
        counts = self.get_counts(self.member_id)
        self.assertTrue(counts["consistency"]["is_consistent"])

        # A task written outside the API is not in the cached dashboard statistics
        db = TestingSessionLocal()
        db.add(Task(workspace_id=self.workspace_id, assigned_to=self.member_id, title="Write tests", status="todo"))
        db.commit()
        db.close()
        self.get_stats(self.member_id)
        consistency = self.get_counts(self.member_id)["consistency"]
        self.assertFalse(consistency["is_consistent"])
        self.assertEqual(
            [(item["field"], item["dashboard"], item["workspace"], item["difference"]) for item in consistency["inconsistencies"]],
            [("active", 2, 3, -1), ("remaining", 2, 3, -1)]
        )

        response = self.client.delete("/dashboard/cache")
        self.assertEqual(response.json()["message"], "Statistics cache cleared")
        self.assertEqual(self.get_stats(self.member_id)["task_metrics"]["all_time"]["total"], 4)
        self.assertTrue(self.get_counts(self.member_id)["consistency"]["is_consistent"])

    def test_task_changes_refresh_cached_statistics(self):
        stats = self.get_stats(self.member_id)
        self.assertEqual(stats["task_metrics"]["all_time"]["total"], 3)

        new_task = self.assign(self.workspace_id, self.owner_id, self.member_id, ["Write tests"])[0]
        stats = self.get_stats(self.member_id)
        self.assertEqual(stats["task_metrics"]["all_time"]["total"], 4)
        self.assertTrue(self.get_counts(self.member_id)["consistency"]["is_consistent"])

        self.client.post(f"/tasks/{new_task}/advance", headers=headers(self.member_id))
        stats = self.get_stats(self.member_id)
        self.assertEqual(stats["task_metrics"]["all_time"]["by_status"]["in_progress"], 2)
        self.assertTrue(self.get_counts(self.member_id)["consistency"]["is_consistent"])

    def test_joining_a_workspace_refreshes_cached_statistics(self):
        self.assertEqual(self.get_stats(self.member_id)["workspace_stats"]["total_workspaces"], 1)
        other_workspace = self.create_workspace(self.owner_id, "Design")
        self.client.post(f"/workspaces/{other_workspace}/join", headers=headers(self.member_id))
        self.assertEqual(self.get_stats(self.member_id)["workspace_stats"]["member_workspaces"], 2)

    def test_unavailable_store(self):
        with patch.object(
            StatisticsAggregator, "get_user_statistics", side_effect=DataSourceUnavailableError("connection refused")
        ):
            response = self.client.get(f"/dashboard/{self.member_id}/stats")
        self.assertEqual(response.status_code, 503)

        with patch.object(
            SQLAlchemyTaskDataSource, "fetch_user_tasks", side_effect=DataSourceUnavailableError("connection refused")
        ):
            response = self.client.get("/tasks/assigned/counts", headers=headers(self.member_id))
        self.assertEqual(response.status_code, 503)

    def test_unexpected_error(self):
        with patch.object(StatisticsAggregator, "get_user_statistics", side_effect=RuntimeError("boom")):
            response = self.client.get(f"/dashboard/{self.member_id}/stats")
        self.assertEqual(response.status_code, 500)
        self.assertIn("boom", response.json()["detail"])

if __name__ == "__main__":
    unittest.main(verbosity=2)
