import csv
import io
from datetime import timedelta

from visitdesk.core.timeutil import local_date, utcnow
from visitdesk.db.models import VisitorRecord, VisitorStatus
from visitdesk.services.query_service import CSV_HEADERS, summarize_window


def _today():
    return local_date(utcnow(), "Asia/Kolkata").isoformat()


def test_csv_export_for_today(client, checkin, admin_headers):
    purpose = 'Contract review, "phase 2"'
    created = checkin(visitor_name="Jane Doe", mobile="9876543210", host_employee="Ravi", purpose=purpose)

    today = _today()
    response = client.get(
        "/api/admin/export", params={"startDate": today, "endDate": today}, headers=admin_headers
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert f"visitors-{today}-to-{today}-" in response.headers["content-disposition"]
    assert response.content.startswith(b"\xef\xbb\xbf")

    rows = list(csv.reader(io.StringIO(response.content.decode("utf-8-sig"))))
    assert rows[0] == CSV_HEADERS
    assert len(rows) == 2
    row = rows[1]
    assert row[0] == str(created["id"])
    assert row[1] == "Jane Doe"
    assert row[2] == "9876543210"
    assert row[5] == purpose
    assert row[8] == "checked_in"
    assert row[9] == "public_kiosk"


def test_csv_export_excludes_other_days(client, checkin, admin_headers):
    checkin()
    response = client.get(
        "/api/admin/export", params={"startDate": "2001-01-01", "endDate": "2001-01-31"}, headers=admin_headers
    )
    rows = list(csv.reader(io.StringIO(response.content.decode("utf-8-sig"))))
    assert rows == [CSV_HEADERS]


def test_json_export(client, checkin, admin_headers):
    checkin(visitor_name="One")
    checkin(visitor_name="Two")
    response = client.get("/api/admin/export", params={"format": "json"}, headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["recordCount"] == 2
    assert [row["visitor_name"] for row in body["data"]] == ["Two", "One"]
    assert body["data"][0]["checkout_time"] is None
    assert body["exportDate"].endswith("Z")


def test_export_rejects_unknown_format_and_bad_dates(client, admin_headers):
    response = client.get("/api/admin/export", params={"format": "xlsx"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_FORMAT"

    response = client.get("/api/admin/export", params={"startDate": "yesterday"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_DATE"


def test_stats(client, checkin, admin_headers):
    first = checkin(host_email="alpha@corp.example")["id"]
    checkin(host_email="alpha@corp.example")
    checkin(host_email="beta@corp.example", visitor_name="Sam")
    client.put(f"/api/visitors/{first}/checkout", headers=admin_headers)

    response = client.get("/api/admin/stats", headers=admin_headers)
    assert response.status_code == 200
    stats = response.json()

    today = stats["today"]
    assert today["total"] == 3
    assert today["active"] == 2
    assert today["checkedOut"] == 1
    assert today["uniqueHosts"] == 2

    assert len(stats["week"]["daily"]) == 7
    assert stats["week"]["daily"][0] == {"date": _today(), "count": 3, "active": 2}
    assert stats["month"]["summary"]["total"] == 3

    assert stats["allTime"]["total"] == 3
    assert stats["allTime"]["totalHosts"] == 2
    assert stats["allTime"]["uniqueVisitors"] == 2

    assert stats["topHosts"][0] == {"hostEmail": "alpha@corp.example", "visitorCount": 2, "activeCount": 1}


def test_stats_on_empty_ledger(client, admin_headers):
    stats = client.get("/api/admin/stats", headers=admin_headers).json()
    assert stats["today"]["total"] == 0
    assert stats["allTime"]["avgVisitDurationMinutes"] is None
    assert stats["topHosts"] == []


def _visit(db, n, checkin_time, checkout_time=None):
    db.add(
        VisitorRecord(
            pass_id=f"VIS-AVG-{n}",
            visitor_name=f"Visitor {n}",
            host_email="host@x.com",
            purpose="Meeting",
            qr_code_data="{}",
            checkin_time=checkin_time,
            checkout_time=checkout_time,
            status=VisitorStatus.checked_out.value if checkout_time else VisitorStatus.checked_in.value,
            created_by="public_kiosk",
        )
    )
    db.commit()


def test_average_visit_duration(db):
    now = utcnow().replace(microsecond=0)
    start = now - timedelta(hours=3)
    _visit(db, 1, start, start + timedelta(minutes=30))
    _visit(db, 2, start, start + timedelta(minutes=90))
    assert summarize_window(db, None, None, now)["avgVisitDurationMinutes"] == 60.0

    # Open visits run until now.
    _visit(db, 3, now - timedelta(minutes=120))
    summary = summarize_window(db, None, None, now)
    assert summary["avgVisitDurationMinutes"] == 80.0
    assert summary["active"] == 1
    assert summary["total"] == 3


def test_audit_log_records_ledger_events(client, checkin, admin_headers):
    visitor_id = checkin()["id"]
    client.put(
        f"/api/visitors/{visitor_id}/checkout",
        headers={**admin_headers, "User-Agent": "front-desk-tablet", "X-Forwarded-For": "10.0.0.7"},
    )

    logs = client.get("/api/admin/audit-logs", params={"limit": 10}, headers=admin_headers).json()["data"]
    actions = [row["action"] for row in logs]
    assert actions[:2] == ["CHECKOUT_VISITOR", "CREATE_VISITOR"]

    checkout_event = logs[0]
    assert checkout_event["recordId"] == visitor_id
    assert checkout_event["newData"]["status"] == "checked_out"
    assert checkout_event["userAgent"] == "front-desk-tablet"
    # Forwarded headers are only honoured behind a trusted proxy.
    assert checkout_event["ipAddress"] == "testclient"


def test_audit_log_can_be_disabled(make_client, login):
    client = make_client(AUDIT_LOG_ENABLED=False)
    headers = login(client, "admin", "admin-pass-123")
    client.post("/api/visitors", json={"visitor_name": "Jane", "host_email": "host@x.com", "purpose": "Meeting"})
    logs = client.get("/api/admin/audit-logs", headers=headers).json()["data"]
    assert logs == []
