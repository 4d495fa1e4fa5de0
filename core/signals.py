# core/signals.py
import sys

from django.contrib.auth.signals import user_logged_in, user_logged_out, user_login_failed
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from .middleware import get_current_request, get_current_user
from .models import AuditLog

# Only models from these apps are audited
AUDITED_APPS = {'core', 'users', 'patients', 'services', 'appointments', 'billing'}

# Skip these models
SKIP_MODELS = {'AuditLog', 'Session', 'LogEntry', 'ContentType', 'Permission'}

# Track original state before save
_original_instances = {}


def _should_skip(sender, instance, **kwargs):
    if 'migrate' in sys.argv or kwargs.get('raw'):
        return True
    if sender.__name__ in SKIP_MODELS or sender._meta.app_label not in AUDITED_APPS:
        return True
    return getattr(instance, '_skip_audit_log', False)


def _actor(instance):
    user = get_current_user() or getattr(instance, '_current_user', None)
    if user is not None and not user.is_authenticated:
        return None
    return user


@receiver(pre_save, dispatch_uid='store_original_instance')
def store_original_instance(sender, instance, **kwargs):
    """Store original instance before save for comparison"""
    if _should_skip(sender, instance, **kwargs):
        return

    # Only track if instance already exists (for updates)
    if instance.pk:
        try:
            original = sender.objects.get(pk=instance.pk)
            _original_instances[f"{sender.__name__}_{instance.pk}"] = original
        except sender.DoesNotExist:
            pass


@receiver(post_save, dispatch_uid='log_model_save')
def log_model_save(sender, instance, created, **kwargs):
    """Automatically log create and update actions"""
    if _should_skip(sender, instance, **kwargs):
        _original_instances.pop(f"{sender.__name__}_{instance.pk}", None)
        return

    user = _actor(instance)
    old_values = None

    if created:
        action = AuditLog.CREATE
        new_values = AuditLog.snapshot(instance)
        description = f"Created {sender._meta.verbose_name}: {instance}"
    else:
        action = AuditLog.UPDATE
        original = _original_instances.pop(f"{sender.__name__}_{instance.pk}", None)

        if original is None:
            new_values = AuditLog.snapshot(instance)
            description = f"Updated {sender._meta.verbose_name}: {instance}"
        else:
            old_values, new_values = AuditLog.get_field_changes(original, instance)
            if not new_values:
                # Nothing changed, skip logging
                return
            description = f"Updated {sender._meta.verbose_name}: {', '.join(new_values)}"

        # Status changes get their own action
        if set(new_values) & {'status', 'payment_status'} and sender.__name__ in ('Appointment', 'Visit', 'Invoice'):
            action = AuditLog.STATUS_UPDATE
            field = 'status' if 'status' in new_values else 'payment_status'
            description = (
                f"Changed {sender._meta.verbose_name} status: "
                f"{(old_values or {}).get(field)} → {new_values[field]}"
            )

    AuditLog.log_action(
        user, action, instance,
        old_values=old_values,
        new_values=new_values,
        request=get_current_request(),
        description=description
    )


@receiver(post_delete, dispatch_uid='log_model_delete')
def log_model_delete(sender, instance, **kwargs):
    """Automatically log delete actions"""
    if _should_skip(sender, instance, **kwargs):
        return

    AuditLog.log_action(
        _actor(instance), AuditLog.DELETE, instance,
        old_values=AuditLog.snapshot(instance),
        request=get_current_request(),
        description=f"Deleted {sender._meta.verbose_name}: {instance}"
    )


@receiver(user_logged_in, dispatch_uid='log_user_login')
def log_user_login(sender, request, user, **kwargs):
    """Log successful user login"""
    AuditLog.log_login(user, request, success=True)


@receiver(user_logged_out, dispatch_uid='log_user_logout')
def log_user_logout(sender, request, user, **kwargs):
    """Log user logout"""
    if user:
        AuditLog.log_logout(user, request)


@receiver(user_login_failed, dispatch_uid='log_failed_login')
def log_failed_login(sender, credentials, request=None, **kwargs):
    """Log failed login attempts"""
    AuditLog.log_login(None, request, success=False, username=credentials.get('username', ''))
