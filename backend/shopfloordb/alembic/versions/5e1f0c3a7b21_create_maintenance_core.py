"""create maintenance core tables

Revision ID: 5e1f0c3a7b21
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "5e1f0c3a7b21"
down_revision = None
branch_labels = None
depends_on = None


_OPEN_STATUS_SQL = "status IN ('PENDING', 'ASSIGNED', 'IN_PROGRESS')"


def _priority_enum() -> sa.Enum:
    return sa.Enum("LOW", "NORMAL", "HIGH", "CRITICAL", name="maintenance_priority_enum", native_enum=False)


def _decision_type_enum() -> sa.Enum:
    return sa.Enum(
        "NONE",
        "YES_NO",
        "MEASUREMENT",
        "PHOTO_REQUIRED",
        name="checklist_decision_type_enum",
        native_enum=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("staff_code", sa.String(length=32), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum(
                "ADMIN",
                "SHIFT_LEAD",
                "TECHNICIAN",
                "OPERATOR",
                "VIEWER",
                name="account_role_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("maintenance_skill_level", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("staff_code", name="uq_users_staff_code"),
        sa.CheckConstraint(
            "maintenance_skill_level BETWEEN 1 AND 3",
            name="ck_users_maintenance_skill_level_range",
        ),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])
    op.create_index(
        "idx_users_skill_available",
        "users",
        ["maintenance_skill_level", "is_active", "is_available"],
    )

    op.create_table(
        "machines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column(
            "machine_category",
            sa.Enum("CNC", "AUTOMATION", "MEASURING", "OTHER", name="machine_category_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("requires_shift_checklist", sa.Boolean(), nullable=False),
        sa.Column("current_operating_hours", sa.Float(), nullable=False),
        sa.Column("operating_hours_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_maintenance_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("current_operating_hours >= 0", name="ck_machines_hours_nonneg"),
    )
    op.create_index("ix_machines_id", "machines", ["id"])
    op.create_index("ix_machines_category_active", "machines", ["machine_category", "is_active"])

    op.create_table(
        "operating_hours_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recorded_hours", sa.Float(), nullable=False),
        sa.Column("previous_hours", sa.Float(), nullable=True),
        sa.Column("delta_hours", sa.Float(), nullable=True),
        sa.Column("is_anomaly", sa.Boolean(), nullable=False),
        sa.Column(
            "recorded_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "source",
            sa.Enum("MANUAL", "OCR", "API", name="hours_source_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("recorded_hours >= 0", name="ck_operating_hours_log_recorded_nonneg"),
    )
    op.create_index("ix_operating_hours_log_id", "operating_hours_log", ["id"])
    op.create_index("ix_operating_hours_log_machine_id", "operating_hours_log", ["machine_id"])
    op.create_index("ix_operating_hours_log_recorded_by_user_id", "operating_hours_log", ["recorded_by_user_id"])
    op.create_index(
        "ix_operating_hours_log_machine_time",
        "operating_hours_log",
        ["machine_id", "recorded_at"],
    )

    op.create_table(
        "maintenance_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("name", name="uq_maintenance_types_name"),
    )
    op.create_index("ix_maintenance_types_id", "maintenance_types", ["id"])

    op.create_table(
        "maintenance_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "maintenance_type_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_types.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("safety_notes", sa.Text(), nullable=True),
        sa.Column(
            "interval_type",
            sa.Enum("HOURS", "DAYS", "WEEKS", "MONTHS", "YEARS", name="interval_type_enum", native_enum=False),
            nullable=True,
        ),
        sa.Column("interval_value", sa.Integer(), nullable=True),
        sa.Column("interval_hours", sa.Float(), nullable=True),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_completed_hours", sa.Float(), nullable=True),
        sa.Column("next_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_due_hours", sa.Float(), nullable=True),
        sa.Column(
            "hours_status",
            sa.Enum("OK", "DUE_SOON", "DUE_TODAY", "OVERDUE", name="plan_hours_status_enum", native_enum=False),
            nullable=True,
        ),
        sa.Column(
            "required_skill_level",
            sa.Enum(
                "HELPER",
                "OPERATOR",
                "TECHNICIAN",
                "SPECIALIST",
                name="required_skill_level_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("priority", _priority_enum(), nullable=False),
        sa.Column("is_shift_critical", sa.Boolean(), nullable=False),
        sa.Column("shift_deadline_time", sa.Time(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "created_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(interval_type IS NOT NULL AND interval_value IS NOT NULL) OR interval_hours IS NOT NULL",
            name="ck_maintenance_plans_has_recurrence",
        ),
        sa.CheckConstraint(
            "interval_value IS NULL OR interval_value > 0",
            name="ck_maintenance_plans_interval_value_pos",
        ),
        sa.CheckConstraint(
            "interval_hours IS NULL OR interval_hours > 0",
            name="ck_maintenance_plans_interval_hours_pos",
        ),
        sa.CheckConstraint(
            "estimated_duration_minutes IS NULL OR estimated_duration_minutes >= 0",
            name="ck_maintenance_plans_duration_nonneg",
        ),
    )
    op.create_index("ix_maintenance_plans_id", "maintenance_plans", ["id"])
    op.create_index("ix_maintenance_plans_machine_id", "maintenance_plans", ["machine_id"])
    op.create_index("ix_maintenance_plans_maintenance_type_id", "maintenance_plans", ["maintenance_type_id"])
    op.create_index("ix_maintenance_plans_next_due_at", "maintenance_plans", ["next_due_at"])
    op.create_index("ix_maintenance_plans_is_active", "maintenance_plans", ["is_active"])
    op.create_index("ix_maintenance_plans_active_due", "maintenance_plans", ["is_active", "next_due_at"])
    op.create_index("ix_maintenance_plans_machine_active", "maintenance_plans", ["machine_id", "is_active"])

    op.create_table(
        "maintenance_checklist_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "maintenance_plan_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("decision_type", _decision_type_enum(), nullable=False),
        sa.Column(
            "on_failure_action",
            sa.Enum("CONTINUE", "ESCALATE", "STOP", name="checklist_failure_action_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("expected_answer", sa.Boolean(), nullable=True),
        sa.Column("min_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Float(), nullable=True),
        sa.Column("measurement_unit", sa.String(length=32), nullable=True),
        sa.Column("is_critical", sa.Boolean(), nullable=False),
        sa.CheckConstraint(
            "min_value IS NULL OR max_value IS NULL OR min_value <= max_value",
            name="ck_maintenance_checklist_items_band",
        ),
    )
    op.create_index("ix_maintenance_checklist_items_id", "maintenance_checklist_items", ["id"])
    op.create_index(
        "ix_maintenance_checklist_items_maintenance_plan_id",
        "maintenance_checklist_items",
        ["maintenance_plan_id"],
    )
    op.create_index(
        "ix_maintenance_checklist_items_plan_sequence",
        "maintenance_checklist_items",
        ["maintenance_plan_id", "sequence"],
    )

    op.create_table(
        "maintenance_instructions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "checklist_item_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_checklist_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("image_ref", sa.String(length=500), nullable=True),
        sa.Column("video_url", sa.String(length=500), nullable=True),
        sa.Column("warning_text", sa.Text(), nullable=True),
        sa.Column("tip_text", sa.Text(), nullable=True),
        sa.UniqueConstraint("checklist_item_id", "step_number", name="uq_maintenance_instructions_item_step"),
    )
    op.create_index("ix_maintenance_instructions_id", "maintenance_instructions", ["id"])
    op.create_index(
        "ix_maintenance_instructions_checklist_item_id",
        "maintenance_instructions",
        ["checklist_item_id"],
    )

    op.create_table(
        "maintenance_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "task_type",
            sa.Enum("PLAN_BASED", "STANDALONE", name="maintenance_task_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "maintenance_plan_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_plans.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("priority", _priority_enum(), nullable=False),
        sa.Column(
            "recurrence_pattern",
            sa.Enum("NONE", "DAILY", "WEEKLY", "MONTHLY", name="task_recurrence_pattern_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "ASSIGNED",
                "IN_PROGRESS",
                "COMPLETED",
                "CANCELLED",
                name="maintenance_task_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shift_deadline_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_past_deadline", sa.Boolean(), nullable=False),
        sa.Column(
            "assigned_to_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completed_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("operating_hours_at_completion", sa.Float(), nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "task_type = 'STANDALONE' OR maintenance_plan_id IS NOT NULL",
            name="ck_maintenance_tasks_plan_based_has_plan",
        ),
    )
    op.create_index("ix_maintenance_tasks_id", "maintenance_tasks", ["id"])
    op.create_index("ix_maintenance_tasks_maintenance_plan_id", "maintenance_tasks", ["maintenance_plan_id"])
    op.create_index("ix_maintenance_tasks_machine_id", "maintenance_tasks", ["machine_id"])
    op.create_index("ix_maintenance_tasks_status", "maintenance_tasks", ["status"])
    op.create_index("ix_maintenance_tasks_due_date", "maintenance_tasks", ["due_date"])
    op.create_index("ix_maintenance_tasks_status_due", "maintenance_tasks", ["status", "due_date"])
    op.create_index(
        "ix_maintenance_tasks_assignee_status",
        "maintenance_tasks",
        ["assigned_to_user_id", "status"],
    )
    op.create_index(
        "uq_maintenance_tasks_open_per_plan",
        "maintenance_tasks",
        ["maintenance_plan_id"],
        unique=True,
        postgresql_where=sa.text(_OPEN_STATUS_SQL),
        sqlite_where=sa.text(_OPEN_STATUS_SQL),
    )

    op.create_table(
        "maintenance_checklist_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "maintenance_task_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "checklist_item_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_checklist_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("decision_type", _decision_type_enum(), nullable=False),
        sa.Column("answer", sa.Boolean(), nullable=True),
        sa.Column("measurement_value", sa.Float(), nullable=True),
        sa.Column("photo_ref", sa.String(length=500), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "completed_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "maintenance_task_id",
            "checklist_item_id",
            name="uq_maintenance_checklist_results_task_item",
        ),
    )
    op.create_index("ix_maintenance_checklist_results_id", "maintenance_checklist_results", ["id"])
    op.create_index(
        "ix_maintenance_checklist_results_maintenance_task_id",
        "maintenance_checklist_results",
        ["maintenance_task_id"],
    )
    op.create_index(
        "ix_maintenance_checklist_results_checklist_item_id",
        "maintenance_checklist_results",
        ["checklist_item_id"],
    )

    op.create_table(
        "maintenance_escalations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "maintenance_task_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "checklist_item_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_checklist_items.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "parent_escalation_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_escalations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "escalated_from_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "escalated_to_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("escalation_level", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("photo_ref", sa.String(length=500), nullable=True),
        sa.Column("blocks_task", sa.Boolean(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "OPEN",
                "ACKNOWLEDGED",
                "RESOLVED",
                "CLOSED",
                name="maintenance_escalation_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "acknowledged_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column(
            "resolved_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "closed_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "escalation_level BETWEEN 1 AND 3",
            name="ck_maintenance_escalations_level_range",
        ),
    )
    op.create_index("ix_maintenance_escalations_id", "maintenance_escalations", ["id"])
    op.create_index(
        "ix_maintenance_escalations_maintenance_task_id",
        "maintenance_escalations",
        ["maintenance_task_id"],
    )
    op.create_index("ix_maintenance_escalations_status", "maintenance_escalations", ["status"])
    op.create_index(
        "ix_maintenance_escalations_status_created",
        "maintenance_escalations",
        ["status", "created_at"],
    )
    op.create_index(
        "ix_maintenance_escalations_to_status",
        "maintenance_escalations",
        ["escalated_to_user_id", "status"],
    )

    op.create_table(
        "maintenance_task_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "maintenance_plan_id",
            sa.Integer(),
            sa.ForeignKey("maintenance_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assignment_date", sa.Date(), nullable=False),
        sa.Column("priority_order", sa.Integer(), nullable=False),
        sa.Column(
            "assigned_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "user_id",
            "maintenance_plan_id",
            "assignment_date",
            name="uq_maintenance_task_assignments_user_plan_date",
        ),
    )
    op.create_index("ix_maintenance_task_assignments_id", "maintenance_task_assignments", ["id"])
    op.create_index("ix_maintenance_task_assignments_user_id", "maintenance_task_assignments", ["user_id"])
    op.create_index(
        "ix_maintenance_task_assignments_maintenance_plan_id",
        "maintenance_task_assignments",
        ["maintenance_plan_id"],
    )
    op.create_index(
        "ix_maintenance_task_assignments_date_user",
        "maintenance_task_assignments",
        ["assignment_date", "user_id"],
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column(
            "actor_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_events_id", "audit_events", ["id"])
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_entity_action", "audit_events", ["entity_type", "action"])
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])
    op.create_index("ix_audit_events_entity_lookup", "audit_events", ["entity_type", "entity_id"])
    op.create_index("ix_audit_events_time_desc", "audit_events", [sa.text("occurred_at DESC")])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("maintenance_task_assignments")
    op.drop_table("maintenance_escalations")
    op.drop_table("maintenance_checklist_results")
    op.drop_index("uq_maintenance_tasks_open_per_plan", table_name="maintenance_tasks")
    op.drop_table("maintenance_tasks")
    op.drop_table("maintenance_instructions")
    op.drop_table("maintenance_checklist_items")
    op.drop_table("maintenance_plans")
    op.drop_table("maintenance_types")
    op.drop_table("operating_hours_log")
    op.drop_table("machines")
    op.drop_table("users")
