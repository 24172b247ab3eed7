import os
from typing import List, Optional

from pydantic import BaseModel


# ----------- Settings -----------

class Settings(BaseModel):
    upload_dir: str = "uploads"
    templates_dir: str = "templates"
    generated_dir: str = "generated"
    layouts_path: str = "template-configs.json"
    ledger_path: str = "certificate-database.json"

    max_rows: int = 1000
    canvas_width: int = 1200
    canvas_height: int = 800
    font_file: str = "DejaVuSans-Bold.ttf"
    text_fill: str = "#333333"

    cors_origins: List[str] = ["*"]

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    email_user: Optional[str] = None
    email_pass: Optional[str] = None
    email_from: Optional[str] = None

    @property
    def certificates_dir(self) -> str:
        return os.path.join(self.generated_dir, "certificates")

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables, falling back to the defaults above.
        """
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            templates_dir=os.getenv("TEMPLATES_DIR", "templates"),
            generated_dir=os.getenv("GENERATED_DIR", "generated"),
            layouts_path=os.getenv("LAYOUTS_PATH", "template-configs.json"),
            ledger_path=os.getenv("LEDGER_PATH", "certificate-database.json"),
            max_rows=int(os.getenv("MAX_ROWS", "1000")),
            canvas_width=int(os.getenv("CANVAS_WIDTH", "1200")),
            canvas_height=int(os.getenv("CANVAS_HEIGHT", "800")),
            font_file=os.getenv("FONT_FILE", "DejaVuSans-Bold.ttf"),
            text_fill=os.getenv("TEXT_FILL", "#333333"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "465")),
            email_user=os.getenv("EMAIL_USER"),
            email_pass=os.getenv("EMAIL_PASS"),
            email_from=os.getenv("EMAIL_FROM"),
        )

    def ensure_dirs(self) -> None:
        for path in (self.upload_dir, self.templates_dir, self.generated_dir, self.certificates_dir):
            os.makedirs(path, exist_ok=True)
