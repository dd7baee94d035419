"""
Unit tests for lab reports, the PDF renderers and the report task.

Celery runs eagerly under config.settings_test, so generate_report_pdf
executes inline unless a test patches it.
"""
from unittest.mock import patch

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from laboratory import reports
from laboratory.exceptions import BlockError, NotFoundError, ValidationError
from laboratory.models import LabReport, Notification
from laboratory.pdf import render_bill_pdf, render_report_pdf
from laboratory.tasks import generate_report_pdf
from tests.conftest import BillFactory, LabReportFactory, OrderFactory

PDF_BYTES = b'%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF'


def pdf_upload(content=PDF_BYTES, content_type='application/pdf', name='cbc.pdf'):
    return SimpleUploadedFile(name, content, content_type=content_type)


class TestParseResults:

    def test_json_string(self):
        rows = reports.parse_results('[{"name": "Hb", "value": 13.2, "unit": "g/dL", "normalRange": "12-16"}]')
        assert rows == [{'parameter': 'Hb', 'value': '13.2', 'unit': 'g/dL',
                         'normal_range': '12-16', 'status': 'normal'}]

    def test_unknown_status_becomes_normal(self):
        rows = reports.parse_results([{'parameter': 'WBC', 'value': '20', 'status': 'weird'},
                                      {'parameter': 'PLT', 'value': '5', 'status': 'CRITICAL'}])
        assert [r['status'] for r in rows] == ['normal', 'critical']

    @pytest.mark.parametrize('value', ['not json', '', None, {'a': 1}, ['x']])
    def test_garbage(self, value):
        assert reports.parse_results(value) == []


class TestValidatePdfUpload:

    def test_too_large(self, settings):
        settings.MAX_REPORT_UPLOAD_MB = 0
        with pytest.raises(ValidationError) as exc_info:
            reports.validate_pdf_upload(pdf_upload())
        assert exc_info.value.code == 'FILE_TOO_LARGE'

    def test_not_a_pdf(self):
        with pytest.raises(ValidationError) as exc_info:
            reports.validate_pdf_upload(pdf_upload(b'GIF89a', 'image/gif', 'x.gif'))
        assert exc_info.value.code == 'INVALID_FILE_TYPE'

    def test_pdf_bytes_with_generic_type(self):
        upload = pdf_upload(content_type='application/octet-stream')
        reports.validate_pdf_upload(upload)
        assert upload.read(4) == b'%PDF'


@pytest.mark.django_db
class TestCreateReport:

    def test_upload_completes_report_and_order(self, laboratory):
        order = OrderFactory(laboratory=laboratory, status='being_tested')

        report = reports.create_report(laboratory, {'order_id': str(order.id), 'test_name': 'CBC'},
                                       upload=pdf_upload())

        assert report.status == 'completed'
        assert report.pdf_file.name.endswith('.pdf')
        order.refresh_from_db()
        assert order.status == 'completed'
        assert order.delivered_at is not None
        assert Notification.objects.filter(event_type='report_ready').exists()

    def test_without_upload_pdf_is_rendered(self, laboratory):
        order = OrderFactory(laboratory=laboratory)

        report = reports.create_report(laboratory, {
            'orderId': str(order.id),
            'testName': 'Lipid Profile',
            'results': '[{"parameter": "LDL", "value": "180", "status": "abnormal"}]',
            'notes': 'Fasting sample',
        })

        assert report.status == 'completed'
        assert report.results[0]['status'] == 'abnormal'
        with report.pdf_file.open('rb') as fh:
            assert fh.read(4) == b'%PDF'

    @patch('laboratory.tasks.generate_report_pdf')
    def test_resubmitting_updates_same_report(self, mock_task, laboratory):
        order = OrderFactory(laboratory=laboratory)
        first = reports.create_report(laboratory, {'order_id': str(order.id), 'test_name': 'CBC'})
        second = reports.create_report(laboratory, {'order_id': str(order.id), 'test_name': 'CBC v2',
                                                    'notes': 'repeat'})

        assert first.id == second.id
        assert second.test_name == 'CBC v2'
        assert LabReport.objects.count() == 1
        assert mock_task.delay.call_count == 2

    def test_missing_fields(self, laboratory):
        with pytest.raises(ValidationError):
            reports.create_report(laboratory, {'test_name': 'CBC'})

    def test_cancelled_order(self, laboratory):
        order = OrderFactory(laboratory=laboratory, status='cancelled')
        with pytest.raises(BlockError) as exc_info:
            reports.create_report(laboratory, {'order_id': str(order.id), 'test_name': 'CBC'})
        assert exc_info.value.code == 'ORDER_CANCELLED'

    def test_other_labs_order(self, laboratory):
        with pytest.raises(NotFoundError):
            reports.create_report(laboratory, {'order_id': str(OrderFactory().id), 'test_name': 'CBC'})


@pytest.mark.django_db
class TestUpdateReport:

    def test_edit_pending_report(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        updated = reports.update_report(laboratory, report.id, {'notes': 'Recheck', 'results': []})
        assert updated.notes == 'Recheck'
        assert updated.results == []

    def test_completed_report_is_locked(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory), status='completed')
        with pytest.raises(ValidationError) as exc_info:
            reports.update_report(laboratory, report.id, {'notes': 'x'})
        assert exc_info.value.code == 'REPORT_LOCKED'

    def test_share_with_patient(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory), status='completed')
        shared = reports.update_report(laboratory, report.id, {'status': 'shared'})
        assert shared.shared_with_patient is True
        assert shared.shared_at is not None
        assert Notification.objects.filter(recipient_type='patient', event_type='report_shared').exists()

    def test_share_with_admin(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory), status='completed')
        shared = reports.update_report(laboratory, report.id, {'share': 'admin'})
        assert shared.shared_with_admin is True
        assert shared.shared_with_patient is False

    @pytest.mark.parametrize('share', ['false', 'no', True, 'everyone'])
    def test_share_requires_known_target(self, laboratory, share):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        updated = reports.update_report(laboratory, report.id, {'share': share, 'notes': 'Draft'})

        assert updated.shared_with_patient is False
        assert updated.shared_with_admin is False
        assert updated.notes == 'Draft'
        assert not Notification.objects.filter(event_type='report_shared').exists()

    def test_cancelled_report_cannot_be_shared(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory), status='cancelled')
        with pytest.raises(ValidationError):
            reports.update_report(laboratory, report.id, {'status': 'shared'})

    def test_cancel(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        assert reports.update_report(laboratory, report.id, {'status': 'cancelled'}).status == 'cancelled'

    def test_invalid_status(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        with pytest.raises(ValidationError) as exc_info:
            reports.update_report(laboratory, report.id, {'status': 'archived'})
        assert exc_info.value.code == 'INVALID_STATUS'

    def test_complete_renders_pdf(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        assert reports.update_report(laboratory, report.id, {'status': 'completed'}).status == 'completed'

    def test_file_not_ready(self, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        with pytest.raises(ValidationError) as exc_info:
            reports.report_file(laboratory, report.id)
        assert exc_info.value.code == 'REPORT_NOT_READY'

    def test_list_shared(self, laboratory):
        LabReportFactory(order=OrderFactory(laboratory=laboratory), shared_with_patient=True)
        LabReportFactory(order=OrderFactory(laboratory=laboratory))
        assert reports.list_reports(laboratory, {'status': 'shared'}).count() == 1
        assert reports.list_reports(laboratory, {'status': 'pending'}).count() == 2


@pytest.mark.django_db
class TestGenerateReportPdfTask:

    def test_missing_report_is_skipped(self):
        generate_report_pdf.apply(args=['00000000-0000-0000-0000-000000000000'])

    def test_cancelled_report_is_skipped(self):
        report = LabReportFactory(status='cancelled')
        generate_report_pdf.apply(args=[str(report.id)])
        report.refresh_from_db()
        assert not report.pdf_file

    def test_gives_up_and_records_error(self):
        report = LabReportFactory()
        with patch('laboratory.pdf.render_report_pdf', side_effect=RuntimeError('font missing')):
            generate_report_pdf.apply(args=[str(report.id)])

        report.refresh_from_db()
        assert report.status == 'pending'
        assert 'font missing' in report.error_message


@pytest.mark.django_db
class TestPdfRendering:

    def test_report_pdf(self):
        report = LabReportFactory(notes='Line one\nLine two')
        content = render_report_pdf(report)
        assert content.startswith(b'%PDF')

    def test_report_pdf_many_rows_breaks_pages(self):
        rows = [{'parameter': f'P{i}', 'value': str(i), 'status': 'abnormal'} for i in range(120)]
        content = render_report_pdf(LabReportFactory(results=rows))
        assert content.startswith(b'%PDF')
        assert content.count(b'/Type /Page') > 2

    def test_bill_pdf(self):
        bill = BillFactory()
        content = render_bill_pdf(bill, bill.request.patient)
        assert content.startswith(b'%PDF')
