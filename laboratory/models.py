import uuid
from django.db import models

from . import status_flow


class Laboratory(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    lab_name = models.CharField(max_length=200)
    owner_name = models.CharField(max_length=200, blank=True, default='')
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=20, unique=True)
    license_number = models.CharField(max_length=100, unique=True)
    gst_number = models.CharField(max_length=50, blank=True, default='')
    gender = models.CharField(max_length=20, blank=True, default='')
    bio = models.TextField(blank=True, default='')
    address = models.JSONField(default=dict, blank=True)
    timings = models.JSONField(default=list, blank=True)
    operating_hours = models.JSONField(default=dict, blank=True)
    contact_person = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)
    rejection_reason = models.TextField(blank=True, default='')
    approved_at = models.DateTimeField(blank=True, null=True)
    last_login_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'laboratories'

    # DRF treats request.user as authenticated when this is True
    is_authenticated = True

    def __str__(self):
        return self.lab_name


class Patient(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default='')
    phone = models.CharField(max_length=20, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    date_of_birth = models.DateField(blank=True, null=True)
    gender = models.CharField(max_length=20, blank=True, default='')
    address = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class LabTest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='tests')
    name = models.CharField(max_length=200, db_index=True)
    description = models.TextField(blank=True, default='')
    price = models.DecimalField(max_digits=12, decimal_places=2)
    category = models.CharField(max_length=100, blank=True, default='')
    preparation_instructions = models.TextField(blank=True, default='')
    report_time = models.CharField(max_length=100, blank=True, default='')
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'lab_tests'
        indexes = [models.Index(fields=['laboratory', 'is_active'])]


class TestRequest(models.Model):
    """A patient's booking for lab tests, before it becomes an Order."""

    TYPE_CHOICES = [
        ('book_test_visit', 'Book test visit'),
        ('lab', 'Lab'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('confirmed', 'Confirmed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]
    VISIT_CHOICES = [
        ('home', 'Home collection'),
        ('lab', 'Lab visit'),
    ]

    # Not a pytest test class despite the name
    __test__ = False

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='test_requests')
    laboratories = models.ManyToManyField(Laboratory, related_name='test_requests', blank=True)
    request_type = models.CharField(max_length=30, choices=TYPE_CHOICES, default='book_test_visit')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='accepted', db_index=True)
    visit_type = models.CharField(max_length=10, choices=VISIT_CHOICES, default='lab')
    patient_address = models.JSONField(default=dict, blank=True)
    payment_status = models.CharField(max_length=20, default='pending')
    source = models.CharField(max_length=30, blank=True, default='')
    items = models.JSONField(default=list, blank=True)
    raw_payload = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'test_requests'

    def items_for(self, laboratory):
        lab_id = str(laboratory.id)
        # Items without a lab id apply to every assigned laboratory
        return [item for item in self.items if str(item.get('laboratory_id') or lab_id) == lab_id]


class Order(models.Model):
    STATUS_CHOICES = [(s, status_flow.STATUS_LABELS.get(s, s.replace('_', ' ').title()))
                      for s in status_flow.VALID_STATUSES]
    DELIVERY_CHOICES = [
        ('home_delivery', 'Home collection'),
        ('pickup', 'Lab visit'),
    ]
    PAYMENT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('refunded', 'Refunded'),
    ]
    PAYMENT_METHOD_CHOICES = [
        ('razorpay', 'Razorpay'),
        ('cash', 'Cash'),
        ('upi', 'UPI'),
        ('card', 'Card'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='orders')
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='orders')
    request = models.ForeignKey(TestRequest, on_delete=models.SET_NULL, blank=True, null=True,
                                related_name='orders')
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=40, choices=STATUS_CHOICES, default='pending', db_index=True)
    delivery_option = models.CharField(max_length=20, choices=DELIVERY_CHOICES, default='pickup')
    delivery_address = models.JSONField(default=dict, blank=True)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='pending',
                                      db_index=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, blank=True, default='')
    payment_id = models.CharField(max_length=100, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    delivered_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    cancellation_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'
        indexes = [
            models.Index(fields=['laboratory', 'status']),
            models.Index(fields=['patient', 'created_at']),
        ]

    @property
    def visit_type(self):
        return 'home' if self.delivery_option == 'home_delivery' else 'lab'


class OrderItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    test = models.ForeignKey(LabTest, on_delete=models.SET_NULL, blank=True, null=True)
    name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(default=1)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        db_table = 'order_items'


class Bill(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request = models.ForeignKey(TestRequest, on_delete=models.CASCADE, related_name='bills')
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='bills')
    items = models.JSONField(default=list)
    test_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    delivery_charge = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    additional_charges = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    generated_at = models.DateTimeField(auto_now=True)
    sent_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'bills'
        constraints = [
            models.UniqueConstraint(fields=['request', 'laboratory'], name='one_bill_per_lab_request'),
        ]


class LabReport(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='report')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='reports')
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='reports')
    test_name = models.CharField(max_length=200)
    results = models.JSONField(default=list, blank=True)
    pdf_file = models.FileField(upload_to='reports/', blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    report_date = models.DateTimeField(blank=True, null=True)
    notes = models.TextField(blank=True, default='')
    error_message = models.TextField(blank=True, default='')
    shared_with_patient = models.BooleanField(default=False)
    shared_with_admin = models.BooleanField(default=False)
    shared_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'lab_reports'
        indexes = [models.Index(fields=['laboratory', 'created_at'])]


class WalletTransaction(models.Model):
    TYPE_CHOICES = [
        ('earning', 'Earning'),
        ('withdrawal', 'Withdrawal'),
        ('commission_deduction', 'Commission deduction'),
        ('refund', 'Refund'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='wallet_transactions')
    type = models.CharField(max_length=30, choices=TYPE_CHOICES, db_index=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    description = models.TextField(blank=True, default='')
    reference_id = models.CharField(max_length=100, blank=True, default='', db_index=True)
    order = models.ForeignKey(Order, on_delete=models.SET_NULL, blank=True, null=True,
                              related_name='wallet_transactions')
    withdrawal_request = models.ForeignKey('WithdrawalRequest', on_delete=models.SET_NULL, blank=True,
                                           null=True, related_name='transactions')
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'wallet_transactions'
        indexes = [models.Index(fields=['laboratory', 'created_at'])]


class WithdrawalRequest(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('paid', 'Paid'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='withdrawals')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payout_method = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    admin_note = models.TextField(blank=True, default='')
    payout_reference = models.CharField(max_length=100, blank=True, default='')
    processed_at = models.DateTimeField(blank=True, null=True)
    rejection_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'withdrawal_requests'


class Notification(models.Model):
    RECIPIENT_CHOICES = [
        ('patient', 'Patient'),
        ('laboratory', 'Laboratory'),
        ('admin', 'Admin'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    recipient_type = models.CharField(max_length=20, choices=RECIPIENT_CHOICES)
    recipient_id = models.UUIDField(blank=True, null=True, db_index=True)
    event_type = models.CharField(max_length=50)
    title = models.CharField(max_length=200)
    message = models.TextField(blank=True, default='')
    data = models.JSONField(default=dict, blank=True)
    read_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'notifications'
        indexes = [models.Index(fields=['recipient_type', 'recipient_id', 'created_at'])]


class SupportTicket(models.Model):
    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]
    STATUS_CHOICES = [
        ('open', 'Open'),
        ('in_progress', 'In progress'),
        ('resolved', 'Resolved'),
        ('closed', 'Closed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    laboratory = models.ForeignKey(Laboratory, on_delete=models.CASCADE, related_name='support_tickets')
    subject = models.CharField(max_length=200)
    message = models.TextField()
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='open', db_index=True)
    admin_response = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'support_tickets'
