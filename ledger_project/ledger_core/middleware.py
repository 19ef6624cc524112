from django.utils.deprecation import MiddlewareMixin

from .models import Company


class CurrentCompanyMiddleware(MiddlewareMixin):
    # Run on every request and
    # attach a .company attribute to the request, based on the logged-in user
    def process_request(self, request):
        request.company = None
        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated:
            return

        # Only companies the user is an active member of
        companies = Company.objects.filter(
            memberships__user=user, memberships__is_active=True)

        # If user switched companies,
        # choice is stored in the session as "active_company_id"
        company_id = request.session.get("active_company_id")
        if company_id:
            # a tampered session id simply resolves to no company
            request.company = companies.filter(pk=company_id).first()
        else:
            # Default company fallback: first membership
            request.company = companies.order_by("memberships__created_at").first()
