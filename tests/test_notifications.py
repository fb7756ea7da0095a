from app.models.notification import NotificationType
from app.services.notification_service import notification_service
from app.utils.exceptions import ForbiddenException, NotFoundException
from tests.support import LabTestCase


class NotificationServiceTest(LabTestCase):

    def setUp(self):
        super().setUp()
        self.first  = notification_service.notify(self.db, self.student.id, "Hello", "First message")
        self.second = notification_service.notify(self.db, self.student.id, "Heads up", "Second message",
                                                  NotificationType.WARNING, {"reservationId": 7})
        notification_service.notify(self.db, self.lecturer.id, "Other", "Not yours")
        self.db.commit()

    def test_inbox_is_per_user_newest_first(self):
        items, total, unread = notification_service.list_notifications(self.db, self.student, 1, 20, False)
        self.assertEqual((total, unread), (2, 2))
        self.assertEqual([n["title"] for n in items], ["Heads up", "Hello"])
        self.assertEqual(items[0]["type"], "warning")
        self.assertEqual(items[0]["data"], {"reservationId": 7})

    def test_mark_read(self):
        data = notification_service.mark_read(self.db, self.first.id, self.student)
        self.assertTrue(data["isRead"])

        items, total, unread = notification_service.list_notifications(self.db, self.student, 1, 20, True)
        self.assertEqual((total, unread), (1, 1))
        self.assertEqual(items[0]["id"], self.second.id)

    def test_cannot_read_others(self):
        with self.assertRaises(ForbiddenException):
            notification_service.mark_read(self.db, self.first.id, self.lecturer)
        with self.assertRaises(NotFoundException):
            notification_service.mark_read(self.db, 999, self.student)

    def test_mark_all_read(self):
        self.assertEqual(notification_service.mark_all_read(self.db, self.student), 2)
        self.assertEqual(notification_service.mark_all_read(self.db, self.student), 0)
        _, _, unread = notification_service.list_notifications(self.db, self.lecturer, 1, 20, False)
        self.assertEqual(unread, 1)

    def test_staff_broadcast(self):
        self.assertEqual(notification_service.notify_staff(self.db, "Queue", "Pending approvals"), 2)
        self.db.commit()
        self.assertEqual(len(self.notifications_for(self.staff)), 1)
        self.assertEqual(len(self.notifications_for(self.admin)), 1)


class NotificationApiTest(LabTestCase):

    def setUp(self):
        super().setUp()
        self.http = self.client()
        self.note = notification_service.notify(self.db, self.student.id, "Hello", "First message")
        self.db.commit()

    def test_list_reports_unread(self):
        res = self.http.get("/api/v1/notifications", headers=self.auth(self.student))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["meta"]["unread"], 1)

        self.http.patch(f"/api/v1/notifications/{self.note.id}/read", headers=self.auth(self.student))
        res = self.http.get("/api/v1/notifications", headers=self.auth(self.student))
        self.assertEqual(res.json()["meta"]["unread"], 0)
        self.assertEqual(res.json()["meta"]["total"], 1)

    def test_mark_all(self):
        res = self.http.post("/api/v1/notifications/mark-all-read", headers=self.auth(self.student))
        self.assertEqual(res.json()["data"]["updated"], 1)

    def test_others_notification_is_403(self):
        res = self.http.patch(f"/api/v1/notifications/{self.note.id}/read", headers=self.auth(self.lecturer))
        self.assertEqual(res.status_code, 403)
