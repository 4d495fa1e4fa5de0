# users/forms.py
from django import forms

from .models import Role, User

MIN_PASSWORD_LENGTH = 6


def validate_password_length(password):
    if len(password or '') < MIN_PASSWORD_LENGTH:
        raise forms.ValidationError('validation.password_too_short', code='password_too_short',
                                    params={'min': MIN_PASSWORD_LENGTH})
    return password


class LoginForm(forms.Form):
    username = forms.CharField(max_length=150)
    password = forms.CharField(strip=False)


class UserForm(forms.ModelForm):
    """Form for creating and updating users"""
    password = forms.CharField(
        required=False,
        strip=False,
        help_text="Leave blank to keep current password (for updates)"
    )
    role = forms.ChoiceField(choices=Role.ROLE_CHOICES)

    class Meta:
        model = User
        fields = ['username', 'full_name', 'email', 'phone', 'is_active']
        error_messages = {
            'username': {'unique': 'validation.username_exists'},
        }

    def __init__(self, *args, **kwargs):
        self.is_update = kwargs.pop('is_update', False)
        self.request_user = kwargs.pop('request_user', None)
        super().__init__(*args, **kwargs)

        # Make password required for new users
        if not self.is_update:
            self.fields['password'].required = True

        if self.instance and self.instance.pk and self.instance.role:
            self.fields['role'].initial = self.instance.role.name

    def clean_username(self):
        username = (self.cleaned_data.get('username') or '').strip()
        if User.objects.filter(username__iexact=username).exclude(pk=self.instance.pk).exists():
            raise forms.ValidationError('validation.username_exists', code='unique')
        return username

    def clean_password(self):
        password = self.cleaned_data.get('password')
        if password or not self.is_update:
            validate_password_length(password)
        return password

    def clean(self):
        cleaned_data = super().clean()

        # An admin may not lock themselves out
        if self.is_update and self.request_user and self.instance == self.request_user:
            if cleaned_data.get('role') and cleaned_data['role'] != Role.ADMIN and self.request_user.is_admin:
                self.add_error('role', forms.ValidationError('users.cannot_demote_self', code='cannot_demote_self'))
            if cleaned_data.get('is_active') is False:
                self.add_error('is_active', forms.ValidationError('users.cannot_delete_self', code='cannot_delete_self'))

        return cleaned_data

    def save(self, commit=True):
        user = super().save(commit=False)
        user.role = Role.get_default(self.cleaned_data['role'])
        password = self.cleaned_data.get('password')

        if password:
            user.set_password(password)

        if commit:
            user.save()
        return user


class PasswordResetForm(forms.Form):
    """New password chosen by an administrator; blank generates one"""
    password = forms.CharField(required=False, strip=False)

    def clean_password(self):
        password = self.cleaned_data.get('password')
        if password:
            validate_password_length(password)
        return password
