from rest_framework import serializers
from django.contrib.auth import authenticate
from .models import User
from travelers.models import TravelerProfile


class UserSerializer(serializers.ModelSerializer):
    verification_level = serializers.SerializerMethodField(read_only=True)
    completed_deliveries = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "role",
            "phone_number",
            "completed_deliveries",
            "verification_level",
        ]
        read_only_fields = ["id", "completed_deliveries", "verification_level"]

    def get_verification_level(self, obj):
        profile = getattr(obj, "traveler_profile", None)
        return profile.verification_level if profile else None

    def get_completed_deliveries(self, obj):
        profile = getattr(obj, "traveler_profile", None)
        return profile.completed_deliveries if profile else None


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(write_only=True)

    def validate(self, data):
        user = authenticate(username=data["username"], password=data["password"])
        if not user:
            raise serializers.ValidationError("Invalid username or password")
        return user


class RegisterSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)
    phone_number = serializers.CharField(required=False, allow_blank=True, default="")

    class Meta:
        model = User
        fields = ['username', 'password', 'email', 'role', 'phone_number']

    def validate_email(self, value):
        if User.objects.filter(email=value).exists():
            raise serializers.ValidationError("Email already exists")
        return value

    def create(self, validated_data):
        user = User.objects.create_user(
            username=validated_data['username'],
            email=validated_data['email'],
            password=validated_data['password'],
            role=validated_data['role'],
            phone_number=validated_data.get('phone_number', ''),
        )

        # Travelers start at the basic verification level with no rating
        if user.role == 'traveler':
            TravelerProfile.objects.create(user=user)

        return user
