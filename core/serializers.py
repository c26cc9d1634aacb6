from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rest_framework import serializers
from django.contrib.auth import password_validation
from django.contrib.auth.tokens import default_token_generator
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.encoding import force_str
from django.utils.http import urlsafe_base64_decode
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog

User = get_user_model()


def validate_timezone_name(value):
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise serializers.ValidationError("Invalid IANA timezone.")
    return value


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)
    timezone = serializers.CharField(required=False, validators=[validate_timezone_name])

    class Meta:
        model = User
        fields = ["username", "email", "password", "first_name", "last_name", "business_name", "timezone"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if normalized_email and User.objects.filter(email__iexact=normalized_email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def create(self, validated_data):
        extra = {}
        if validated_data.get("timezone"):
            extra["timezone"] = validated_data["timezone"]
        user = User.objects.create_user(
            username=validated_data["username"],
            email=validated_data.get("email", ""),
            password=validated_data["password"],
            first_name=validated_data.get("first_name", ""),
            last_name=validated_data.get("last_name", ""),
            business_name=validated_data.get("business_name", ""),
            **extra,
        )
        return user


class OwnerProfileSerializer(serializers.ModelSerializer):
    timezone = serializers.CharField(required=False, validators=[validate_timezone_name])
    has_reporting_password = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "username", "email", "business_name", "timezone", "has_sms_feature", "has_reporting_password"]
        read_only_fields = ["id", "username", "email", "has_sms_feature", "has_reporting_password"]

    def get_has_reporting_password(self, obj):
        return obj.has_reporting_password()


class ReportingPasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(write_only=True, required=False, allow_blank=True)
    new_password = serializers.CharField(write_only=True, allow_blank=True, max_length=128)

    default_error_messages = {
        "invalid_current_password": "Current reporting password is incorrect.",
    }

    def validate(self, attrs):
        user = self.context["request"].user
        if user.has_reporting_password() and not user.check_reporting_password(attrs.get("current_password") or ""):
            self.fail("invalid_current_password")
        return attrs

    def save(self):
        user = self.context["request"].user
        user.set_reporting_password(self.validated_data["new_password"])
        user.save(update_fields=["reporting_password"])
        return user


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["business_name"] = getattr(user, "business_name", "")
        token["has_sms_feature"] = getattr(user, "has_sms_feature", False)
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            try:
                user = User.objects.get(email__iexact=username)
                attrs["username"] = user.get_username()
            except User.DoesNotExist:
                pass
        return super().validate(attrs)


class PasswordResetRequestSerializer(serializers.Serializer):
    email = serializers.EmailField()


class PasswordResetConfirmSerializer(serializers.Serializer):
    uid = serializers.CharField(required=True)
    token = serializers.CharField()
    new_password = serializers.CharField(write_only=True, min_length=8)

    default_error_messages = {
        "invalid_reset_credentials": "Invalid password reset credentials.",
    }

    def _get_user(self, attrs):
        uid = attrs.get("uid")

        if uid:
            try:
                user_id = force_str(urlsafe_base64_decode(uid))
                return User.objects.filter(pk=user_id).first()
            except (TypeError, ValueError, OverflowError, DjangoValidationError):
                return None

        return None

    def validate(self, attrs):
        token = attrs.get("token", "")
        user = self._get_user(attrs)

        if not user:
            self.fail("invalid_reset_credentials")

        if not default_token_generator.check_token(user, token):
            self.fail("invalid_reset_credentials")

        password_validation.validate_password(attrs["new_password"], user=user)
        attrs["user"] = user
        return attrs

    def save(self):
        user = self.validated_data["user"]
        user.set_password(self.validated_data["new_password"])
        user.save(update_fields=["password"])
        return user


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
