import logging

from celery import shared_task
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.mail import send_mail
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # base delay in seconds, doubled on each retry
    acks_late=True,           # ack after the run so a crashed worker doesn't lose the task
    reject_on_worker_lost=True,
)
def generate_report_pdf(self, report_id: str):
    """
    Render and store the PDF for a lab report.

    Retries: up to 3, backoff 10s -> 20s -> 40s. After the last failure
    the report stays pending with error_message filled in.
    """
    from laboratory import notifications
    from laboratory.models import LabReport
    from laboratory.pdf import render_report_pdf

    logger.info("[Celery][generate_report_pdf] report_id=%s (attempt %d/%d)",
                report_id, self.request.retries + 1, self.max_retries + 1)

    try:
        report = LabReport.objects.select_related('patient', 'laboratory').get(id=report_id)
    except LabReport.DoesNotExist:
        logger.error("[Celery] LabReport %s does not exist, skipping", report_id)
        return

    if report.status == 'cancelled':
        logger.info("[Celery] LabReport %s was cancelled, skipping", report_id)
        return

    try:
        content = render_report_pdf(report)
        report.pdf_file.save(f"report-{report.id}.pdf", ContentFile(content), save=False)
        report.status = 'completed'
        report.report_date = report.report_date or timezone.now()
        report.error_message = ''
        report.save(update_fields=['pdf_file', 'status', 'report_date', 'error_message', 'updated_at'])
        logger.info("[Celery] report_id=%s PDF stored (%d bytes)", report_id, len(content))

    except Exception as exc:
        logger.warning("[Celery] report_id=%s PDF failed (attempt %d): %s",
                       report_id, self.request.retries + 1, exc)

        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.info("[Celery] retrying in %ds (retry %d)", countdown, self.request.retries + 1)
            raise self.retry(exc=exc, countdown=countdown)

        logger.error("[Celery] report_id=%s gave up after %d retries", report_id, self.max_retries)
        report.error_message = f"[failed after {self.max_retries} retries] {exc}"
        report.save(update_fields=['error_message', 'updated_at'])
        return

    notifications.report_ready(report)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    acks_late=True,
    reject_on_worker_lost=True,
)
def send_notification_email(self, to: str, subject: str, body: str):
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [to])
    except Exception as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning("[Celery] email to %s failed, retrying in %ds: %s", to, countdown, exc)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] email to %s failed after %d retries: %s", to, self.max_retries, exc)
        return
    logger.info("[Celery] email sent to %s: %s", to, subject)


@shared_task
def send_login_otp(laboratory_id: str, otp: str):
    """Deliver a login OTP to the laboratory's registered email."""
    from laboratory.models import Laboratory

    laboratory = Laboratory.objects.filter(id=laboratory_id).first()
    if laboratory is None:
        logger.error("[Celery] Laboratory %s does not exist, OTP not sent", laboratory_id)
        return

    minutes = settings.OTP_EXPIRY_MINUTES
    send_mail(
        'Your login code',
        f"Your login code is {otp}. It expires in {minutes} minutes.",
        settings.DEFAULT_FROM_EMAIL,
        [laboratory.email],
    )
    logger.info("[Celery] login OTP sent to laboratory %s", laboratory_id)
