import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from config import Settings
from main import create_app
from rendering import PillowRasterizer


class FakeMailer:
    """Collects outgoing mail instead of talking to an SMTP server."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, to, subject, html_body, attachment, attachment_name):
        if to in self.fail_for:
            raise ConnectionError(f"mailbox unavailable: {to}")
        self.sent.append({
            "to": to,
            "subject": subject,
            "html": html_body,
            "attachment": attachment,
            "attachment_name": attachment_name,
        })


class FailingRasterizer(PillowRasterizer):
    """Fails on the n-th certificate."""

    def __init__(self, fail_on):
        super().__init__()
        self.calls = 0
        self.fail_on = fail_on

    def rasterize(self, document):
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("rasterizer crashed")
        return super().rasterize(document)


def png_bytes(size=(600, 400), color="white") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        templates_dir=str(tmp_path / "templates"),
        generated_dir=str(tmp_path / "generated"),
        layouts_path=str(tmp_path / "template-configs.json"),
        ledger_path=str(tmp_path / "certificate-database.json"),
        max_rows=10,
        email_user="certs@example.com",
    )


@pytest.fixture
def template_image(settings):
    settings.ensure_dirs()
    path = f"{settings.templates_dir}/gold.png"
    with open(path, "wb") as f:
        f.write(png_bytes())
    return path


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def client(settings, template_image, fake_mailer):
    app = create_app(settings, mailer_factory=lambda s, cfg: fake_mailer)
    return TestClient(app)
