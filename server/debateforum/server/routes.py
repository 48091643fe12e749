from .views import (
    accept_definition_view,
    check_timeouts_view,
    create_debate_view,
    delete_notification_view,
    forgot_password_view,
    get_debate_view,
    join_debate_view,
    list_notifications_view,
    login_view,
    mark_all_notifications_read_view,
    mark_notification_read_view,
    propose_definition_view,
    reset_password_view,
    signup_view,
    submit_turn_view,
    supersede_definition_view,
    unread_count_view,
    vote_view,
)


def setup_routes(app):
    app.router.add_post("/debates", create_debate_view)
    app.router.add_get("/debates/{id}", get_debate_view)
    app.router.add_post("/debates/{id}/join", join_debate_view)
    app.router.add_post("/debates/{id}/arguments", submit_turn_view)
    app.router.add_post("/debates/{id}/definitions", propose_definition_view)
    app.router.add_post("/definitions/{id}/accept", accept_definition_view)
    app.router.add_post("/definitions/{id}/supersede", supersede_definition_view)
    app.router.add_post("/votes/{kind:argument|definition}", vote_view)
    app.router.add_get("/notifications", list_notifications_view)
    app.router.add_get("/notifications/unread-count", unread_count_view)
    app.router.add_post("/notifications/read-all", mark_all_notifications_read_view)
    app.router.add_post("/notifications/{id}/read", mark_notification_read_view)
    app.router.add_delete("/notifications/{id}", delete_notification_view)
    app.router.add_get("/cron/check-timeouts", check_timeouts_view)
    app.router.add_post("/auth/signup", signup_view)
    app.router.add_post("/auth/login", login_view)
    app.router.add_post("/auth/forgot-password", forgot_password_view)
    app.router.add_post("/auth/reset-password", reset_password_view)
