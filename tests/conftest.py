from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from download_youtube_reports import ReportDescriptor, ReportJob
from sync_state import to_epoch_seconds


def make_report(
    report_id: str,
    report_type_id: str,
    create_time: str,
    job_id: str = "job-1",
    start_time: str = "2023-01-01T08:00:00Z",
) -> ReportDescriptor:
    return ReportDescriptor(
        report_id=report_id,
        job_id=job_id,
        report_type_id=report_type_id,
        create_time=create_time,
        create_timestamp=to_epoch_seconds(create_time),
        start_time=start_time,
        end_time=start_time,
        download_url=f"https://youtubereporting.googleapis.com/v1/media/CHANNEL/x/jobs/{job_id}/reports/{report_id}?alt=media",
    )


class FakeReportingClient:
    """In-memory stand-in for YouTubeReportingClient."""

    def __init__(
        self,
        jobs: Sequence[ReportJob],
        pages: Optional[Dict[str, List[Tuple[List[ReportDescriptor], Optional[str]]]]] = None,
        payloads: Optional[Dict[str, bytes]] = None,
    ) -> None:
        self.jobs = list(jobs)
        self.pages = pages or {}
        self.payloads = payloads or {}
        self.page_calls: List[Tuple[str, Optional[int], Optional[str]]] = []
        self.downloaded: List[str] = []

    def list_jobs(self, include_system_managed: bool = True) -> List[ReportJob]:
        return [job for job in self.jobs if include_system_managed or not job.system_managed]

    def list_reports_page(self, job, page_size, page_token=None):
        self.page_calls.append((job.id, job.created_after, page_token))
        job_pages = self.pages.get(job.id, [])
        index = int(page_token) if page_token else 0
        if index >= len(job_pages):
            return [], None
        return job_pages[index]

    def download_report(self, report: ReportDescriptor, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payloads[report.report_id])
        self.downloaded.append(report.report_id)
        return destination


class FakeS3Client:
    def __init__(self) -> None:
        self.uploads: List[Tuple[str, str, str]] = []

    def upload_file(self, filename: str, bucket: str, key: str) -> None:
        self.uploads.append((filename, bucket, key))


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    root = tmp_path / "data"
    (root / "in").mkdir(parents=True)
    (root / "out").mkdir(parents=True)
    return root
