"""Initial schema - tenants, contacts, rules, campaigns, scheduling

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Creates every table the orchestrator needs: organizations and contacts,
automation rules with their dependency graph and executions, campaigns and
recipients, business hours, engagement statistics, and scheduled messages.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the orchestrator schema."""

    # ==========================================================================
    # Tenants and contacts
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'UTC',
            enforce_business_hours BOOLEAN NOT NULL DEFAULT true,
            holiday_country VARCHAR(10),
            dependency_timeout_hours INTEGER,
            max_concurrent_sends INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE contacts (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(255),
            phone VARCHAR(50),
            first_name VARCHAR(100),
            last_name VARCHAR(100),
            company VARCHAR(255),
            job_title VARCHAR(255),
            custom_fields JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_unsubscribed BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_contacts_org_email ON contacts(organization_id, email)')

    op.execute('''
        CREATE TABLE suppressions (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            channel VARCHAR(20) NOT NULL,
            address VARCHAR(255) NOT NULL,
            reason VARCHAR(30) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_suppression_address UNIQUE (organization_id, channel, address)
        )
    ''')

    # ==========================================================================
    # Automation rules, dependency graph, executions
    # ==========================================================================
    op.execute('''
        CREATE TABLE automation_rules (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(200) NOT NULL,
            description TEXT,
            channel VARCHAR(20) NOT NULL,
            trigger_type VARCHAR(30) NOT NULL,
            trigger_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            conditions JSONB NOT NULL DEFAULT '[]'::jsonb,
            condition_logic VARCHAR(5) NOT NULL DEFAULT 'and',
            subject_template TEXT,
            body_template TEXT NOT NULL,
            ab_variants JSONB NOT NULL DEFAULT '[]'::jsonb,
            send_delay_minutes INTEGER NOT NULL DEFAULT 0,
            use_optimal_send_time BOOLEAN NOT NULL DEFAULT false,
            priority INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            max_sends_per_contact INTEGER,
            cooldown_period_days INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT true,
            triggered_count INTEGER NOT NULL DEFAULT 0,
            sent_count INTEGER NOT NULL DEFAULT 0,
            failed_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_rules_org_trigger ON automation_rules(organization_id, trigger_type, is_active)'
    )

    op.execute('''
        CREATE TABLE rule_dependencies (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            rule_id UUID NOT NULL REFERENCES automation_rules(id) ON DELETE CASCADE,
            depends_on_rule_id UUID NOT NULL REFERENCES automation_rules(id) ON DELETE CASCADE,
            dependency_type VARCHAR(20) NOT NULL,
            delay_minutes INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_rule_dependency UNIQUE (rule_id, depends_on_rule_id),
            CONSTRAINT ck_rule_dependency_self CHECK (rule_id <> depends_on_rule_id),
            CONSTRAINT ck_rule_dependency_delay CHECK (delay_minutes >= 0)
        )
    ''')
    op.execute('CREATE INDEX idx_rule_dependencies_org ON rule_dependencies(organization_id)')
    op.execute(
        'CREATE INDEX idx_rule_dependencies_depends_on ON rule_dependencies(depends_on_rule_id)'
    )

    op.execute('''
        CREATE TABLE automation_executions (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            rule_id UUID NOT NULL REFERENCES automation_rules(id) ON DELETE CASCADE,
            contact_id UUID NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
            trigger_type VARCHAR(30) NOT NULL,
            trigger_data JSONB NOT NULL DEFAULT '{}'::jsonb,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            scheduled_for TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            claim_token UUID,
            sent_at TIMESTAMPTZ,
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            ab_variant VARCHAR(50),
            subject TEXT,
            body TEXT,
            provider_message_id VARCHAR(255),
            conversion_type VARCHAR(50),
            conversion_value DOUBLE PRECISION,
            converted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_executions_status_due ON automation_executions(status, scheduled_for)'
    )
    op.execute(
        'CREATE INDEX idx_executions_rule_contact ON automation_executions(rule_id, contact_id)'
    )
    op.execute(
        'CREATE INDEX idx_executions_org_created ON automation_executions(organization_id, created_at)'
    )

    # ==========================================================================
    # Campaigns
    # ==========================================================================
    op.execute('''
        CREATE TABLE campaigns (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(200) NOT NULL,
            channel VARCHAR(20) NOT NULL,
            subject_template TEXT,
            body_template TEXT NOT NULL,
            scheduled_at TIMESTAMPTZ,
            status VARCHAR(20) NOT NULL DEFAULT 'draft',
            max_retries INTEGER NOT NULL DEFAULT 3,
            total_recipients INTEGER NOT NULL DEFAULT 0,
            sent_count INTEGER NOT NULL DEFAULT 0,
            failed_count INTEGER NOT NULL DEFAULT 0,
            pending_count INTEGER NOT NULL DEFAULT 0,
            cancelled_count INTEGER NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_campaign_counters
                CHECK (sent_count + failed_count + pending_count = total_recipients)
        )
    ''')
    op.execute('CREATE INDEX idx_campaigns_org_status ON campaigns(organization_id, status)')
    op.execute('CREATE INDEX idx_campaigns_status_scheduled ON campaigns(status, scheduled_at)')

    op.execute('''
        CREATE TABLE campaign_recipients (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
            address VARCHAR(255) NOT NULL,
            variables JSONB NOT NULL DEFAULT '{}'::jsonb,
            status VARCHAR(30) NOT NULL DEFAULT 'pending',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            next_attempt_at TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            claim_token UUID,
            sent_at TIMESTAMPTZ,
            error_message TEXT,
            provider_message_id VARCHAR(255),
            open_count INTEGER NOT NULL DEFAULT 0,
            click_count INTEGER NOT NULL DEFAULT 0,
            opened_at TIMESTAMPTZ,
            clicked_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_campaign_recipient_address UNIQUE (campaign_id, address)
        )
    ''')
    op.execute(
        'CREATE INDEX idx_recipients_campaign_status ON campaign_recipients(campaign_id, status)'
    )
    op.execute('CREATE INDEX idx_recipients_due ON campaign_recipients(status, next_attempt_at)')
    op.execute(
        'CREATE INDEX idx_recipients_provider_msg ON campaign_recipients(provider_message_id)'
    )

    # ==========================================================================
    # Scheduling: business hours, engagement, one-off messages
    # ==========================================================================
    op.execute('''
        CREATE TABLE business_hours (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            day_of_week INTEGER NOT NULL,
            is_enabled BOOLEAN NOT NULL DEFAULT true,
            start_time TIME NOT NULL,
            end_time TIME NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_business_hours_day UNIQUE (organization_id, day_of_week),
            CONSTRAINT ck_business_hours_day CHECK (day_of_week BETWEEN 0 AND 6)
        )
    ''')

    op.execute('''
        CREATE TABLE engagement_patterns (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            hour_of_day INTEGER NOT NULL,
            day_of_week INTEGER NOT NULL,
            open_count INTEGER NOT NULL DEFAULT 0,
            click_count INTEGER NOT NULL DEFAULT 0,
            engagement_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_engagement_bucket UNIQUE (organization_id, hour_of_day, day_of_week),
            CONSTRAINT ck_engagement_hour CHECK (hour_of_day BETWEEN 0 AND 23),
            CONSTRAINT ck_engagement_day CHECK (day_of_week BETWEEN 0 AND 6)
        )
    ''')

    op.execute('''
        CREATE TABLE scheduled_messages (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
            channel VARCHAR(20) NOT NULL,
            address VARCHAR(255) NOT NULL,
            subject TEXT,
            body TEXT NOT NULL,
            scheduled_for TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            claimed_at TIMESTAMPTZ,
            claim_token UUID,
            sent_at TIMESTAMPTZ,
            error_message TEXT,
            provider_message_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_scheduled_messages_due ON scheduled_messages(status, scheduled_for)'
    )
    op.execute(
        'CREATE INDEX idx_scheduled_messages_org ON scheduled_messages(organization_id, created_at)'
    )
    op.execute(
        'CREATE INDEX idx_scheduled_messages_provider_msg ON scheduled_messages(provider_message_id)'
    )


def downgrade() -> None:
    """Drop the orchestrator schema."""

    # Reverse order (respecting foreign keys)
    op.execute('DROP TABLE IF EXISTS scheduled_messages')
    op.execute('DROP TABLE IF EXISTS engagement_patterns')
    op.execute('DROP TABLE IF EXISTS business_hours')
    op.execute('DROP TABLE IF EXISTS campaign_recipients')
    op.execute('DROP TABLE IF EXISTS campaigns')
    op.execute('DROP TABLE IF EXISTS automation_executions')
    op.execute('DROP TABLE IF EXISTS rule_dependencies')
    op.execute('DROP TABLE IF EXISTS automation_rules')
    op.execute('DROP TABLE IF EXISTS suppressions')
    op.execute('DROP TABLE IF EXISTS contacts')
    op.execute('DROP TABLE IF EXISTS organizations')
