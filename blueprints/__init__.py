"""
Blueprint registration for PBE Journey.

All blueprints are registered without URL prefixes; routes carry their own
/api/... paths.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.core import bp as core_bp
    from blueprints.study import bp as study_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.planner import bp as planner_bp
    from blueprints.social import bp as social_bp
    from blueprints.insights import bp as insights_bp
    from blueprints.billing import bp as billing_bp
    from blueprints.admin import bp as admin_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(study_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(planner_bp)
    app.register_blueprint(social_bp)
    app.register_blueprint(insights_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(admin_bp)
