"""
Lab order status pipeline.

Lab visit:        pending -> visit_time -> sample_collected -> ... -> completed
Home collection:  pending -> lab_assistant_is_arriving -> sample_collected -> ... -> completed

Orders advance one step at a time. `cancelled` can be set from any
non-final state. A handful of legacy statuses are still accepted on write
and mapped onto the flow for display.
"""

PENDING = 'pending'
VISIT_TIME = 'visit_time'
LAB_ASSISTANT_IS_ARRIVING = 'lab_assistant_is_arriving'
SAMPLE_COLLECTED = 'sample_collected'
BEING_TESTED = 'being_tested'
REPORTS_BEING_GENERATED = 'reports_being_generated'
TEST_SUCCESSFUL = 'test_successful'
REPORTS_UPDATED = 'reports_updated'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
ACCEPTED = 'accepted'

STATUS_FLOW = [
    PENDING,
    VISIT_TIME,
    LAB_ASSISTANT_IS_ARRIVING,
    SAMPLE_COLLECTED,
    BEING_TESTED,
    REPORTS_BEING_GENERATED,
    TEST_SUCCESSFUL,
    REPORTS_UPDATED,
    COMPLETED,
]

LEGACY_STATUSES = [ACCEPTED, 'processing', 'ready', 'delivered']

VALID_STATUSES = STATUS_FLOW + [CANCELLED] + LEGACY_STATUSES

FINAL_STATUSES = {COMPLETED, CANCELLED}

STATUS_LABELS = {
    PENDING: 'Pending',
    VISIT_TIME: 'You can now visit the lab',
    LAB_ASSISTANT_IS_ARRIVING: 'Lab assistant is arriving',
    SAMPLE_COLLECTED: 'Sample Collected',
    BEING_TESTED: 'Being Tested',
    REPORTS_BEING_GENERATED: 'Reports Being Generated',
    TEST_SUCCESSFUL: 'Test Successful',
    REPORTS_UPDATED: 'Reports Updated',
    COMPLETED: 'Completed',
    CANCELLED: 'Cancelled',
}

# Statuses that also trigger an email to the patient
EMAIL_STATUSES = {SAMPLE_COLLECTED, TEST_SUCCESSFUL, REPORTS_UPDATED}

# Statuses that stamp Order.delivered_at
DELIVERED_STATUSES = {REPORTS_UPDATED, COMPLETED}

_LEGACY_MAP = {
    ACCEPTED: PENDING,
    'new': PENDING,
    'ready': VISIT_TIME,
    'test_completed': TEST_SUCCESSFUL,
    'report_uploaded': REPORTS_UPDATED,
}

# Step skipped for each visit type
_SKIPPED_STEP = {
    'home': VISIT_TIME,
    'lab': LAB_ASSISTANT_IS_ARRIVING,
}


def normalize_status(status):
    """Map any stored status onto the display flow."""
    if status in _LEGACY_MAP:
        return _LEGACY_MAP[status]
    if status == CANCELLED or status in STATUS_FLOW:
        return status
    return PENDING


def status_label(status):
    return STATUS_LABELS.get(status, status)


def next_status(current, visit_type=None):
    """
    Next status in the flow, or None at the end (or for cancelled orders).

    visit_type 'home' skips visit_time, 'lab' skips lab_assistant_is_arriving.
    """
    if current == CANCELLED:
        return None

    flow = STATUS_FLOW
    skipped = _SKIPPED_STEP.get(visit_type)
    if skipped:
        flow = [s for s in STATUS_FLOW if s != skipped]

    current = normalize_status(current)
    if current not in flow:
        # Sitting on the step this visit type skips: continue from its position
        position = STATUS_FLOW.index(current)
        remaining = [s for s in STATUS_FLOW[position + 1:] if s in flow]
        return remaining[0] if remaining else None

    index = flow.index(current)
    if index == len(flow) - 1:
        return None
    return flow[index + 1]


def is_valid_status(status):
    return status in VALID_STATUSES
